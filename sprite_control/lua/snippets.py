"""Static Lua fragments shared by the generated scripts.

Nothing in this module is interpolated.  Every script is assembled as::

    PRELUDE + helper blocks + ``local`` parameter bindings + body

and all dynamic values enter through the bindings written by
``sprite_control.lua.generator.lua_literal``.  The fragments therefore
never need escaping and the same parameters always produce the same
text.

Color tables in scripts are ``{r, g, b, a}``; pixel tables are
``{x, y, {r, g, b, a}}``; point tables are ``{x, y}``.  ``a`` is nil for
an RGB-only color: scripts use 255, or the snapped palette entry's alpha.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Preludes
# ---------------------------------------------------------------------------

SPRITE_PRELUDE = r"""local spr = app.activeSprite
if not spr then
	error("No active sprite")
end
local pc = app.pixelColor
local INDEXED = spr.colorMode == ColorMode.INDEXED
local GRAYSCALE = spr.colorMode == ColorMode.GRAYSCALE
"""

JSON_HELPERS = r"""
local function jsonString(s)
	s = s:gsub('[%c"\\]', function(ch)
		if ch == '"' then
			return '\\"'
		elseif ch == "\\" then
			return "\\\\"
		end
		return string.format("\\u%04x", ch:byte())
	end)
	return '"' .. s .. '"'
end

local function hexColor(r, g, b, a)
	return string.format("#%02X%02X%02X%02X", r, g, b, a)
end
"""

LAYER_HELPERS = r"""
local function findLayerIn(layers, name)
	for _, lyr in ipairs(layers) do
		if lyr.name == name then
			return lyr
		end
		if lyr.isGroup then
			local found = findLayerIn(lyr.layers, name)
			if found then
				return found
			end
		end
	end
	return nil
end

local function requireLayer(name)
	local layer = findLayerIn(spr.layers, name)
	if not layer then
		error("Layer not found: " .. name)
	end
	return layer
end

local function countImageLayers(layers)
	local n = 0
	for _, lyr in ipairs(layers) do
		if lyr.isGroup then
			n = n + countImageLayers(lyr.layers)
		else
			n = n + 1
		end
	end
	return n
end

local function requireImageLayer(name)
	local layer = requireLayer(name)
	if layer.isGroup then
		error("Layer is a group: " .. name)
	end
	return layer
end

local function requireFrame(n)
	local frame = spr.frames[n]
	if not frame then
		error("Frame not found: " .. n)
	end
	return frame
end
"""

# Palette snapping mirrors sprite_utils.color.nearest_palette_index:
# squared RGB distance, alpha ignored, strict "<" so the lowest index
# wins ties.  In indexed sprites the transparent index is never a
# candidate, so a snapped write is always an opaque palette entry.
COLOR_HELPERS = r"""
local function paletteOf()
	local pal = spr.palettes[1]
	if not pal or #pal == 0 then
		error("Sprite has no palette")
	end
	return pal
end

local function nearestPaletteIndex(r, g, b)
	local pal = paletteOf()
	local skip = -1
	if INDEXED then
		skip = spr.transparentColor
	end
	local best, bestDist = nil, math.huge
	for i = 0, #pal - 1 do
		if i ~= skip then
			local c = pal:getColor(i)
			local dr, dg, db = r - c.red, g - c.green, b - c.blue
			local d = dr * dr + dg * dg + db * db
			if d < bestDist then
				best, bestDist = i, d
			end
		end
	end
	if best == nil then
		error("Palette has no drawable entries")
	end
	return best
end

local function resolveRGBA(c, snap)
	if not snap then
		return c[1], c[2], c[3], c[4] or 255
	end
	local p = paletteOf():getColor(nearestPaletteIndex(c[1], c[2], c[3]))
	return p.red, p.green, p.blue, c[4] or p.alpha
end

local function pixelValue(c, snap)
	if INDEXED then
		if c[4] == 0 then
			return spr.transparentColor
		end
		return nearestPaletteIndex(c[1], c[2], c[3])
	end
	local r, g, b, a = resolveRGBA(c, snap)
	if GRAYSCALE then
		return pc.graya(math.floor((r * 2126 + g * 7152 + b * 722) / 10000 + 0.5), a)
	end
	return pc.rgba(r, g, b, a)
end

local function toolColor(c, snap)
	if INDEXED then
		return Color{ index = pixelValue(c, snap) }
	end
	local r, g, b, a = resolveRGBA(c, snap)
	return Color{ r = r, g = g, b = b, a = a }
end
"""

# Direct pixel writes go through a full-canvas image so a cel that was
# trimmed or moved never shifts the written coordinates.
CANVAS_HELPERS = r"""
local function emptyValue()
	if INDEXED then
		return spr.transparentColor
	end
	return 0
end

local function canvasImage(layer, frame)
	local img = Image(spr.spec)
	img:clear(emptyValue())
	local cel = layer:cel(frame)
	if cel then
		img:drawImage(cel.image, cel.position)
	end
	return img
end

local function commitImage(layer, frame, img)
	local cel = layer:cel(frame)
	if cel then
		cel.image = img
		cel.position = Point(0, 0)
	else
		spr:newCel(layer, frame, img, Point(0, 0))
	end
end

local function inCanvas(x, y)
	return x >= 0 and y >= 0 and x < spr.width and y < spr.height
end
"""

PIXEL_READ_HELPERS = r"""
local function pixelHex(cel, px, py)
	if not cel then
		return "#00000000"
	end
	local img = cel.image
	local ix, iy = px - cel.position.x, py - cel.position.y
	if ix < 0 or iy < 0 or ix >= img.width or iy >= img.height then
		return "#00000000"
	end
	local v = img:getPixel(ix, iy)
	if INDEXED then
		local pal = spr.palettes[1]
		if v >= #pal or (v == spr.transparentColor and not cel.layer.isBackground) then
			return "#00000000"
		end
		local c = pal:getColor(v)
		return hexColor(c.red, c.green, c.blue, c.alpha)
	elseif GRAYSCALE then
		local k = pc.grayaV(v)
		return hexColor(k, k, k, pc.grayaA(v))
	end
	return hexColor(pc.rgbaR(v), pc.rgbaG(v), pc.rgbaB(v), pc.rgbaA(v))
end
"""

TAG_HELPERS = r"""
local function findTag(name)
	for _, tag in ipairs(spr.tags) do
		if tag.name == name then
			return tag
		end
	end
	return nil
end
"""

SAVE = r"""
spr:saveAs(spr.filename)
"""

# ---------------------------------------------------------------------------
# Bodies
# ---------------------------------------------------------------------------

CREATE_CANVAS = r"""
local spr = Sprite(width, height, colorMode)
if colorMode == ColorMode.INDEXED then
	-- 255 is the transparent index so that index 0 is an ordinary color
	spr.transparentColor = 255
	for _, cel in ipairs(spr.cels) do
		cel.image:clear(255)
	end
end
spr:saveAs(path)
print(path)
"""

GET_SPRITE_INFO = r"""
local mode = "rgb"
if GRAYSCALE then
	mode = "grayscale"
elseif INDEXED then
	mode = "indexed"
end

local layers = {}
for _, lyr in ipairs(spr.layers) do
	layers[#layers + 1] = string.format('{"name":%s,"visible":%s}', jsonString(lyr.name), tostring(lyr.isVisible))
end

local durations = {}
for _, fr in ipairs(spr.frames) do
	durations[#durations + 1] = string.format("%d", math.floor(fr.duration * 1000 + 0.5))
end

local tags = {}
for _, tag in ipairs(spr.tags) do
	local dir = "forward"
	if tag.aniDir == AniDir.REVERSE then
		dir = "reverse"
	elseif tag.aniDir == AniDir.PING_PONG then
		dir = "pingpong"
	end
	tags[#tags + 1] = string.format('{"name":%s,"from_frame":%d,"to_frame":%d,"direction":"%s"}',
		jsonString(tag.name), tag.fromFrame.frameNumber, tag.toFrame.frameNumber, dir)
end

print(string.format(
	'{"width":%d,"height":%d,"color_mode":"%s","frame_count":%d,"layer_count":%d,"layers":[%s],"frame_durations_ms":[%s],"tags":[%s],"transparent_index":%d}',
	spr.width, spr.height, mode, #spr.frames, #spr.layers,
	table.concat(layers, ","), table.concat(durations, ","), table.concat(tags, ","),
	spr.transparentColor
))
"""

ADD_LAYER = r"""
app.transaction(function()
	local layer = spr:newLayer()
	layer.name = layerName
end)
""" + SAVE + r"""print("Layer added successfully")
"""

# Image layers nested in groups count toward the guard; deleting a group
# removes every image layer under it.
DELETE_LAYER = r"""
local total = countImageLayers(spr.layers)
if total <= 1 then
	error("Cannot delete the last layer")
end
local layer = requireLayer(layerName)
local removed = 1
if layer.isGroup then
	removed = countImageLayers(layer.layers)
end
if total - removed < 1 then
	error("Cannot delete the last layer")
end
app.transaction(function()
	spr:deleteLayer(layer)
end)
""" + SAVE + r"""print("Layer deleted successfully")
"""

ADD_FRAME = r"""
app.transaction(function()
	local frame = spr:newEmptyFrame(#spr.frames + 1)
	frame.duration = durationMs / 1000
end)
""" + SAVE + r"""print(#spr.frames)
"""

DELETE_FRAME = r"""
if #spr.frames <= 1 then
	error("Cannot delete the last frame")
end
local frame = requireFrame(frameNumber)
app.transaction(function()
	spr:deleteFrame(frame)
end)
""" + SAVE + r"""print("Frame deleted successfully")
"""

SET_FRAME_DURATION = r"""
local frame = requireFrame(frameNumber)
app.transaction(function()
	frame.duration = durationMs / 1000
end)
""" + SAVE + r"""print("Frame duration set successfully")
"""

CREATE_TAG = r"""
if toFrame > #spr.frames then
	error("Frame range exceeds sprite frames")
end
if findTag(tagName) then
	error("Tag already exists: " .. tagName)
end
app.transaction(function()
	local tag = spr:newTag(fromFrame, toFrame)
	tag.name = tagName
	tag.aniDir = aniDir
end)
""" + SAVE + r"""print("Tag created successfully")
"""

DELETE_TAG = r"""
local tag = findTag(tagName)
if not tag then
	error("Tag not found: " .. tagName)
end
app.transaction(function()
	spr:deleteTag(tag)
end)
""" + SAVE + r"""print("Tag deleted successfully")
"""

# Cels are collected before the insert: frame objects are positional, so
# inserting ahead of the source would shift what it refers to.
DUPLICATE_FRAME = r"""
local src = requireFrame(frameNumber)
if insertAfter > #spr.frames then
	error("Insert position exceeds sprite frames")
end
local position = insertAfter
if position == 0 then
	position = #spr.frames
end

local copies = {}
local function collect(layers)
	for _, lyr in ipairs(layers) do
		if lyr.isGroup then
			collect(lyr.layers)
		else
			local cel = lyr:cel(src)
			if cel then
				copies[#copies + 1] = { lyr, Image(cel.image), cel.position, cel.opacity }
			end
		end
	end
end
collect(spr.layers)
local duration = src.duration

app.transaction(function()
	local frame = spr:newEmptyFrame(position + 1)
	frame.duration = duration
	for _, c in ipairs(copies) do
		local cel = spr:newCel(c[1], frame, c[2], c[3])
		cel.opacity = c[4]
	end
end)
""" + SAVE + r"""print(position + 1)
"""

LINK_CEL = r"""
local layer = requireImageLayer(layerName)
local source = requireFrame(sourceFrame)
local target = requireFrame(targetFrame)
local cel = layer:cel(source)
if not cel then
	error("Source cel not found in frame " .. sourceFrame)
end
app.transaction(function()
	spr:newCel(layer, target, cel.image, cel.position)
end)
""" + SAVE + r"""print("Cel linked successfully")
"""

SET_PALETTE = r"""
app.transaction(function()
	local pal = Palette(#colors)
	for i, c in ipairs(colors) do
		pal:setColor(i - 1, Color{ r = c[1], g = c[2], b = c[3], a = c[4] or 255 })
	end
	spr:setPalette(pal)
end)
""" + SAVE + r"""print("Palette set successfully")
"""

GET_PALETTE = r"""
local pal = spr.palettes[1]
local entries = {}
for i = 0, #pal - 1 do
	local c = pal:getColor(i)
	entries[#entries + 1] = '"' .. hexColor(c.red, c.green, c.blue, c.alpha) .. '"'
end
print(string.format('{"colors":[%s],"size":%d}', table.concat(entries, ","), #pal))
"""

DRAW_PIXELS = r"""
local layer = requireImageLayer(layerName)
local frame = requireFrame(frameNumber)
app.transaction(function()
	local img = canvasImage(layer, frame)
	for _, p in ipairs(pixels) do
		if inCanvas(p[1], p[2]) then
			img:putPixel(p[1], p[2], pixelValue(p[3], usePalette))
		end
	end
	commitImage(layer, frame, img)
end)
""" + SAVE + r"""print("Pixels drawn successfully")
"""

# Shared by the tool-based shapes: activates the target, then runs one
# app.useTool call per stroke in `strokes`.
_TOOL_STROKES = r"""
local layer = requireImageLayer(layerName)
local frame = requireFrame(frameNumber)
app.transaction(function()
	app.activeLayer = layer
	app.activeFrame = frame
	local c = toolColor(color, usePalette)
	local brush = Brush(brushSize)
	for _, stroke in ipairs(strokes) do
		local pts = {}
		for _, p in ipairs(stroke) do
			pts[#pts + 1] = Point(p[1], p[2])
		end
		app.useTool{
			tool = toolName,
			color = c,
			brush = brush,
			points = pts,
		}
	end
end)
""" + SAVE

DRAW_LINE = _TOOL_STROKES + r"""print("Line drawn successfully")
"""

DRAW_CONTOUR = _TOOL_STROKES + r"""print("Contour drawn successfully")
"""

DRAW_RECTANGLE = _TOOL_STROKES + r"""print("Rectangle drawn successfully")
"""

DRAW_CIRCLE = _TOOL_STROKES + r"""print("Circle drawn successfully")
"""

FILL_AREA = r"""
local layer = requireImageLayer(layerName)
local frame = requireFrame(frameNumber)
app.transaction(function()
	app.activeLayer = layer
	app.activeFrame = frame
	app.useTool{
		tool = "paint_bucket",
		color = toolColor(color, usePalette),
		points = { Point(seed[1], seed[2]) },
		contiguous = true,
		tolerance = tolerance,
	}
end)
""" + SAVE + r"""print("Area filled successfully")
"""

# Threshold lookup mirrors sprite_utils.dither.dither_threshold on
# absolute canvas coordinates; Lua's % is a floor modulo like Python's.
DRAW_WITH_DITHER = r"""
local layer = requireImageLayer(layerName)
local frame = requireFrame(frameNumber)

local function exactValue(c)
	if not INDEXED then
		return pixelValue(c, false)
	end
	if c[4] == 0 then
		return spr.transparentColor
	end
	local pal = paletteOf()
	for i = 0, #pal - 1 do
		if i ~= spr.transparentColor then
			local p = pal:getColor(i)
			if p.red == c[1] and p.green == c[2] and p.blue == c[3] and (c[4] == nil or p.alpha == c[4]) then
				return i
			end
		end
	end
	local n = #pal
	if n >= 256 or n == spr.transparentColor then
		error("No free palette index for dither color " .. hexColor(c[1], c[2], c[3], c[4] or 255))
	end
	pal:resize(n + 1)
	pal:setColor(n, Color{ r = c[1], g = c[2], b = c[3], a = c[4] or 255 })
	return n
end

app.transaction(function()
	local v1 = exactValue(color1)
	local v2 = exactValue(color2)
	local img = canvasImage(layer, frame)
	for py = y, y + height - 1 do
		local row = matrix[py % #matrix + 1]
		for px = x, x + width - 1 do
			if inCanvas(px, py) then
				local threshold = row[px % #row + 1] / levels
				if ratio > threshold then
					img:putPixel(px, py, v1)
				else
					img:putPixel(px, py, v2)
				end
			end
		end
	end
	commitImage(layer, frame, img)
end)
""" + SAVE + r"""print("Dithering applied successfully")
"""

GET_PIXELS = r"""
local layer = requireLayer(layerName)
local frame = requireFrame(frameNumber)
local cel = nil
if not layer.isGroup then
	cel = layer:cel(frame)
end
local last = math.min(offset + count, width * height) - 1
local out = {}
for i = offset, last do
	local px = x + i % width
	local py = y + math.floor(i / width)
	out[#out + 1] = string.format('{"x":%d,"y":%d,"color":"%s"}', px, py, pixelHex(cel, px, py))
end
print("[" .. table.concat(out, ",") .. "]")
"""

# Frame 0 saves every frame with the engine's own exporter.  A single
# frame is rendered with Image:drawSprite, which composites the visible
# layers bottom to top, into a one-frame sprite that keeps the source
# palette and transparent index.
EXPORT_SPRITE = r"""
if frameNumber == 0 then
	spr:saveCopyAs(outputPath)
else
	requireFrame(frameNumber)
	local flat = Image(spr.spec)
	flat:clear(INDEXED and spr.transparentColor or 0)
	flat:drawSprite(spr, frameNumber)
	local out = Sprite(spr.spec)
	out:setPalette(spr.palettes[1])
	out.transparentColor = spr.transparentColor
	out:newCel(out.layers[1], 1, flat, Point(0, 0))
	out:saveAs(outputPath)
	out:close()
end
print("Exported successfully")
"""

EXPORT_SPRITESHEET = r"""
local opts = {
	type = layout,
	textureFilename = outputPath,
	borderPadding = padding,
	shapePadding = padding,
	innerPadding = padding,
	trim = false,
	extrude = false,
}
if metadataPath then
	opts.dataFilename = metadataPath
	opts.dataFormat = "json-hash"
end
app.command.ExportSpriteSheet(opts)

local result = string.format('{"spritesheet_path":%s,"frame_count":%d', jsonString(outputPath), #spr.frames)
if metadataPath then
	result = result .. ',"metadata_path":' .. jsonString(metadataPath)
end
print(result .. "}")
"""

# saveCopyAs leaves the open document (and its file) untouched.
SAVE_AS = r"""
spr:saveCopyAs(outputPath)
print('{"success":true,"file_path":' .. jsonString(outputPath) .. '}')
"""

IMPORT_IMAGE = r"""
local frame = requireFrame(frameNumber)
local img = Image{ fromFile = imagePath }
if not img then
	error("Failed to load image: " .. imagePath)
end
local layer = findLayerIn(spr.layers, layerName)
if layer and layer.isGroup then
	error("Layer is a group: " .. layerName)
end
app.transaction(function()
	if not layer then
		layer = spr:newLayer()
		layer.name = layerName
	end
	spr:newCel(layer, frame, img, Point(x, y))
end)
""" + SAVE + r"""print("Image imported successfully")
"""
