# The rows of an Interlaced image are arranged in the following order:
#       Group 1 : Every 8th row, starting with row 0.
#       Group 2 : Every 8th row, starting with row 4.
#       Group 3 : Every 4th row, starting with row 2.
#       Group 4 : Every 2nd row, starting with row 1.
INTERLACE_PASSES = ((0, 8), (4, 8), (2, 4), (1, 2))

# Used when a frame has neither a local nor a global color table.
FALLBACK_COLOR_TABLE = [bytes(3)] * 256

OPAQUE = 255
TRANSPARENT = 0


def deinterlace(data, width, height):
    """Return data with its rows moved from transmission order to display order."""
    new_data = bytearray(len(data))
    original_row = 0
    for start, step in INTERLACE_PASSES:
        for new_row in range(start, height, step):
            # Copy the data over from the original data one row at a time.
            row = data[original_row * width:original_row * width + width]
            new_data[new_row * width:new_row * width + len(row)] = row
            original_row += 1
    # Short data can make the copy above run past the end, trim it back.
    return bytes(new_data[:len(data)])


def make_rgba(data, color_table, transparent_color_index=None):
    """Map palette indexes to RGBA bytes.

    Indexes past the end of color_table come out opaque black, and the pixels
    using transparent_color_index (if not None) get an alpha of 0.
    """
    # Build the 4 bytes for every possible index once so the pixel loop is a lookup.
    quads = [bytes((0, 0, 0, OPAQUE))] * 256
    for index, color in enumerate(color_table[:256]):
        quads[index] = bytes(color[:3]) + bytes((OPAQUE,))
    if transparent_color_index is not None:
        quads[transparent_color_index] = quads[transparent_color_index][:3] + bytes((TRANSPARENT,))
    return b''.join([quads[index] for index in data])
