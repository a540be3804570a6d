import os
import time
from collections import namedtuple

from gif_compose import FALLBACK_COLOR_TABLE, deinterlace, make_rgba
from gif_lzw import Gif_LZW

VERBOSE = False
ENFORCE_VERSION = False
# When set, only frames whose graphic control extension has the transparency flag get a transparent index.
TRANSPARENCY_NEEDS_FLAG = False
# Some encoders leave a stray 0 between blocks.
SKIP_DANGLING_TERMINATORS = False

# Block separators
EXTENSION_INTRODUCER = 0x21
IMAGE_SEPARATOR = 0x2C
TRAILER = 0x3B

# Extension labels
PLAIN_TEXT_LABEL = 0x01
GRAPHIC_CONTROL_LABEL = 0xF9
COMMENT_LABEL = 0xFE
APPLICATION_LABEL = 0xFF

# Logical screen descriptor packed byte
GLOBAL_COLOR_TABLE_FLAG = 0x80
COLOR_RESOLUTION_SHIFT = 4
GLOBAL_SORT_FLAG = 0x08
COLOR_TABLE_SIZE_MASK = 0x07

# Image descriptor packed byte
LOCAL_COLOR_TABLE_FLAG = 0x80
INTERLACE_FLAG = 0x40
LOCAL_SORT_FLAG = 0x20

# Graphic control extension packed byte
DISPOSAL_METHOD_SHIFT = 2
DISPOSAL_METHOD_MASK = 0x07
USER_INPUT_FLAG = 0x02
TRANSPARENT_COLOR_FLAG = 0x01
GRAPHIC_CONTROL_BLOCK_SIZE = 4

APPLICATION_BLOCK_SIZE = 11
NETSCAPE_IDENTIFIER = b'NETSCAPE2.0'
NETSCAPE_SUB_BLOCK_SIZE = 3
NETSCAPE_LOOP_SUB_BLOCK_ID = 1

MINIMUM_LZW_CODE_SIZE = 2
MAXIMUM_LZW_CODE_SIZE = 8

# Per-frame cache slots
DECODED = 'decoded'
DEINTERLACED = 'deinterlaced'
# Left in the deinterlaced slot once the reordered rows have replaced the decoded ones.
FOLDED_IN = 'folded in'

Frame_Image = namedtuple('Frame_Image', 'rgba left top width height')


def ord16(letters):
    return letters[0] + letters[1] * 256


class GIFError(Exception):
    """Base error, optionally pinned to the offending byte."""

    def __init__(self, message, offset=None, value=None):
        self.message = message
        self.offset = offset
        self.value = value
        if offset is not None:
            if value is None:
                message = '%s (end of data @ 0x%08X)' % (message, offset)
            else:
                message = '%s (0x%02X @ 0x%08X)' % (message, value, offset)
        super().__init__(message)


class GIFFormatError(GIFError):
    pass


class GIFStructureError(GIFError):
    pass


class GIFUsageError(GIFError):
    pass


class Graphic_Control(object):
    def __init__(self, disposal_method, user_input_required, transparent_color_flag, transparent_color_index, delay):
        self.disposal_method = disposal_method
        self.user_input_required = user_input_required
        self.transparent_color_flag = transparent_color_flag
        self.transparent_color_index = transparent_color_index
        # Stored in hundredths of a second.
        self.delay = delay
        self.delay_ms = delay * 10

    def __repr__(self):
        return '<Graphic_Control: disposal %d, %d ms>' % (self.disposal_method, self.delay_ms)


class Gif_Frame(object):
    def __init__(self):
        self.graphic_control = None
        self.left = None
        self.top = None
        self.width = None
        self.height = None
        self.local_color_table_flag = False
        self.interlaced = False
        self.color_table_sorted = False
        self.local_color_table_size = 0
        self.local_color_table = None
        self.minimum_lzw_code_size = None
        self.lzw_data = None

    def __repr__(self):
        return '<Gif_Frame: %sx%s @ %s,%s>' % (self.width, self.height, self.left, self.top)

    @property
    def transparent_color_index(self):
        """The index drawn as transparent, 0 when there is no graphic control extension.

        None (nothing transparent) only when TRANSPARENCY_NEEDS_FLAG is set and the flag is clear.
        """
        if self.graphic_control is None:
            return None if TRANSPARENCY_NEEDS_FLAG else 0
        if TRANSPARENCY_NEEDS_FLAG and not self.graphic_control.transparent_color_flag:
            return None
        return self.graphic_control.transparent_color_index


class Gif(object):
    """A parsed gif: screen descriptor, color tables, loop count and frames.

    The frames keep their image data compressed; decode(), deinterlace() and
    to_image() inflate and compose them on request, caching the results by
    frame index.

    repeat_count is None when there is no NETSCAPE2.0 loop extension, 0 means
    loop forever.
    """

    GIF87a = b'GIF87a'
    GIF89a = b'GIF89a'

    def __init__(self, data, filename=None, decompress=False, verbose=None):
        self.verbose = VERBOSE if verbose is None else verbose
        start_time = time.time()
        self.filename = filename
        self.data = data = bytes(data)
        self.log('loading', filename or '%d bytes' % len(data))
        self.frames = []
        # None when there's no NETSCAPE2.0 block, 0 means loop forever.
        self.repeat_count = None
        self._cache = {}
        self.version = data[:6]
        if self.version not in (self.GIF87a, self.GIF89a):
            raise GIFFormatError('not a gif', 0, data[0] if data else None)
        if len(data) < 13:
            raise GIFFormatError('logical screen descriptor is truncated', len(data))
        # Where in self.data is the next piece of data.
        self.tell = 6
        self.parse_headers()
        self.current_frame = None
        self.parse_blocks()
        self.log('took %.2f seconds' % (time.time() - start_time))
        if decompress:
            for index in range(len(self.frames)):
                self.decode(index)

    def __repr__(self):
        return '<Gif: "%s" %s>' % (self.filename, self.dims)

    def log(self, *args):
        if self.verbose:
            print(*args)

    def parse_headers(self):
        self.log('| Logical Screen Descriptor')
        self.width = ord16(self.data[6:8])
        self.height = ord16(self.data[8:10])
        self.dims = (self.width, self.height)

        screen_descriptor = self.data[10]
        # bits 0-2 are the bits pixel in the image minus 1 (0-7 => 1-8)
        self.global_color_table_size = screen_descriptor & COLOR_TABLE_SIZE_MASK
        # the number of entries in the global color table can be calculated as such
        global_color_table_entries = 1 << (self.global_color_table_size + 1)
        # bit 3 is whether the global color table is sorted by most used colors
        self.global_color_table_sorted = bool(screen_descriptor & GLOBAL_SORT_FLAG)
        if self.version == self.GIF87a:
            self.global_color_table_sorted = False
        # bits 4-6 are the bits in an entry of the original color palette minus 1 (0-7 => 1-8)
        self.color_resolution = screen_descriptor >> COLOR_RESOLUTION_SHIFT & 7
        # bit 7 is whether the global color table exists
        self.global_color_table_flag = bool(screen_descriptor & GLOBAL_COLOR_TABLE_FLAG)

        # The index in the global color table (if it exists) for the background of the screen
        self.background_color_index = self.data[11]

        # the ratio defines width:height
        aspect_ratio_byte = self.data[12]
        if aspect_ratio_byte:
            # This is the specific math it uses to define the ratio
            self.pixel_aspect_ratio = (aspect_ratio_byte + 15) / 64
        else:
            # If not set then it's disabled
            self.pixel_aspect_ratio = 1
        self.tell = 13
        if self.global_color_table_flag:
            self.log('| Global Color Table')
            self.global_color_table = self.parse_color_table(global_color_table_entries)
        else:
            self.global_color_table = None

    def parse_color_table(self, table_entries):
        size = 3 * table_entries
        data = self.data[self.tell:self.tell + size]
        if len(data) != size:
            raise GIFStructureError('color table is truncated', self.tell + len(data))
        self.tell += size
        return [data[i:i + 3] for i in range(0, size, 3)]

    def parse_blocks(self):
        data = self.data
        while 1:
            try:
                separator = data[self.tell]
            # Some gifs don't include the trailer.
            except IndexError:
                self.log('/!\\ No trailer found')
                return
            try:
                if separator == TRAILER:
                    self.tell += 1
                    break
                if separator == EXTENSION_INTRODUCER:
                    self.parse_extension_block()
                elif separator == IMAGE_SEPARATOR:
                    self.parse_image_block()
                elif separator == 0 and SKIP_DANGLING_TERMINATORS:
                    self.tell += 1
                else:
                    raise GIFStructureError('unknown block', self.tell, separator)
            # The buffer ran out part way through a block.
            except IndexError:
                raise GIFStructureError('unexpected end of data', len(data)) from None
        if self.tell < len(data):
            self.log('/!\\ ignoring %d bytes after trailer' % (len(data) - self.tell))

    def pending_frame(self):
        # A graphic control extension belongs to the next image, so the frame can exist before its descriptor.
        if self.current_frame is None:
            self.current_frame = Gif_Frame()
        return self.current_frame

    def parse_extension_block(self):
        self.log('| Extension')
        if ENFORCE_VERSION and self.version == self.GIF87a:
            raise GIFStructureError('87a gif has 89a block', self.tell, EXTENSION_INTRODUCER)
        self.tell += 1
        label = self.data[self.tell]
        if label == GRAPHIC_CONTROL_LABEL:
            self.tell += 1
            self.parse_graphics_control_block()
        elif label == APPLICATION_LABEL:
            self.tell += 1
            self.parse_application_block()
        elif label == COMMENT_LABEL:
            self.tell += 1
            self.log('| | Comment')
            self.skip_sub_blocks()
        elif label == PLAIN_TEXT_LABEL:
            self.tell += 1
            self.parse_plain_text_block()
        else:
            raise GIFStructureError('unknown extension', self.tell, label)

    def parse_graphics_control_block(self):
        self.log('| | Graphics Control')
        data = self.data
        block_size = data[self.tell]
        self.tell += 1
        # Read the fields out of the sub-block whatever length it claims, short ones read as zeros.
        block = data[self.tell:self.tell + block_size].ljust(GRAPHIC_CONTROL_BLOCK_SIZE, b'\x00')
        self.tell += block_size
        self.expect_terminator()
        packed_bit = block[0]
        # Bits 2-4 How to dispose of the image before the next one, kept as stored for the playback side
        disposal_method = packed_bit >> DISPOSAL_METHOD_SHIFT & DISPOSAL_METHOD_MASK
        # Bit 0 Is the later color index byte has data
        transparent_color_flag = bool(packed_bit & TRANSPARENT_COLOR_FLAG)
        self.pending_frame().graphic_control = Graphic_Control(
            disposal_method=disposal_method,
            user_input_required=bool(packed_bit & USER_INPUT_FLAG),
            transparent_color_flag=transparent_color_flag,
            transparent_color_index=block[3] if transparent_color_flag else 0,
            delay=ord16(block[1:3]),
        )

    def parse_application_block(self):
        self.log('| | Application')
        data = self.data
        block_size = data[self.tell]
        if block_size != APPLICATION_BLOCK_SIZE:
            raise GIFStructureError('app extension of 11 byte length expected', self.tell, block_size)
        self.tell += 1
        identifier = data[self.tell:self.tell + APPLICATION_BLOCK_SIZE]
        self.tell += APPLICATION_BLOCK_SIZE
        # Any other application is allowed, just not understood.
        if identifier != NETSCAPE_IDENTIFIER:
            self.log('| | Skipping application %r' % identifier)
            self.skip_sub_blocks()
            return
        sub_block_size = data[self.tell]
        if sub_block_size != NETSCAPE_SUB_BLOCK_SIZE:
            raise GIFStructureError('invalid NETSCAPE2.0 sub-block length', self.tell, sub_block_size)
        self.tell += 1
        sub_block_id = data[self.tell]
        if sub_block_id != NETSCAPE_LOOP_SUB_BLOCK_ID:
            raise GIFStructureError('invalid app extension sub-block', self.tell, sub_block_id)
        self.tell += 1
        self.repeat_count = ord16(data[self.tell:self.tell + 2])
        self.tell += 2
        self.expect_terminator()

    def parse_plain_text_block(self):
        self.log('| | Plain Text')
        self.skip_sub_blocks()
        # The graphics control extension affects the next block of plain text or image type. Since we're ignoring
        #  plain text, drop the related graphics control info so it doesn't land on the next image.
        if self.current_frame is not None:
            self.current_frame.graphic_control = None

    def skip_sub_blocks(self):
        # Process sub-blocks until a 0.
        data = self.data
        while 1:
            length = data[self.tell]
            self.tell += 1
            if not length:
                return
            self.tell += length

    def expect_terminator(self):
        value = self.data[self.tell] if self.tell < len(self.data) else None
        if value != 0:
            raise GIFStructureError('missing null terminator', self.tell, value)
        self.tell += 1

    def parse_image_block(self):
        self.log('| Image Descriptor #%d' % (len(self.frames) + 1))
        frame = self.pending_frame()
        data = self.data
        self.tell += 1
        # ord16 on a short slice raises IndexError like the rest of the truncated reads.
        frame.left = ord16(data[self.tell:self.tell + 2])
        frame.top = ord16(data[self.tell + 2:self.tell + 4])
        frame.width = ord16(data[self.tell + 4:self.tell + 6])
        frame.height = ord16(data[self.tell + 6:self.tell + 8])
        self.tell += 8

        packed = data[self.tell]
        self.tell += 1
        # Bits 0-2 The size of the local color table (see same bits for global color table)
        frame.local_color_table_size = packed & COLOR_TABLE_SIZE_MASK
        # Bits 3-4 Reserved
        # Bit 5 Is the local color table sorted, which isn't a thing in 87a
        frame.color_table_sorted = bool(packed & LOCAL_SORT_FLAG) and self.version != self.GIF87a
        # Bit 6 Is the image interlaced
        frame.interlaced = bool(packed & INTERLACE_FLAG)
        # Bit 7 Is there a local color table
        frame.local_color_table_flag = bool(packed & LOCAL_COLOR_TABLE_FLAG)
        if frame.local_color_table_flag:
            self.log('| Local Color Table')
            frame.local_color_table = self.parse_color_table(1 << (frame.local_color_table_size + 1))

        self.log('| Image Data')
        minimum_lzw_code_size = data[self.tell]
        if not MINIMUM_LZW_CODE_SIZE <= minimum_lzw_code_size <= MAXIMUM_LZW_CODE_SIZE:
            raise GIFStructureError('invalid LZW minimum code size', self.tell, minimum_lzw_code_size)
        self.tell += 1
        frame.minimum_lzw_code_size = minimum_lzw_code_size
        frame.lzw_data = self.parse_image_data()

        self.frames.append(frame)
        self.current_frame = None
        self.log('| Frame #%d processed' % len(self.frames))

    def parse_image_data(self):
        # Make these local due to the tight loops.
        tell = self.tell
        data = self.data
        lzw_data = bytearray()
        while 1:
            length = data[tell]
            if not length:
                break
            # This tell usage is backwards from the norm so we can do a single assignment to self.tell.
            tell += length + 1
            lzw_data += data[tell - length:tell]
        # Re-assign to self.tell and add 1 from the length check that was just done.
        self.tell = tell + 1
        return bytes(lzw_data)

    def get_frame(self, index):
        if not 0 <= index < len(self.frames):
            raise GIFUsageError('frame index %d out of range (%d frames)' % (index, len(self.frames)))
        return self.frames[index]

    def decode(self, index=0):
        """Return the frame's palette indexes, width * height of them, in transmission order."""
        frame = self.get_frame(index)
        key = (index, DECODED)
        if key not in self._cache:
            lzw = Gif_LZW(frame.minimum_lzw_code_size, frame.lzw_data, frame.width * frame.height)
            self._cache[key] = lzw.parse_stream_data()
        return self._cache[key]

    def deinterlace(self, index=0, overwrite=False):
        """Return the frame's palette indexes in display row order.

        With overwrite, the reordered indexes also replace what decode() returns.
        """
        frame = self.get_frame(index)
        if not frame.interlaced:
            raise GIFUsageError('frame %d is not interlaced' % index)
        key = (index, DEINTERLACED)
        deinterlaced = self._cache.get(key)
        if deinterlaced is FOLDED_IN:
            return self._cache[(index, DECODED)]
        if deinterlaced is None:
            deinterlaced = self._cache[key] = deinterlace(self.decode(index), frame.width, frame.height)
        if overwrite:
            self._cache[(index, DECODED)] = deinterlaced
            self._cache[key] = FOLDED_IN
        return deinterlaced

    def get_color_table(self, index):
        frame = self.get_frame(index)
        if frame.local_color_table_flag:
            return frame.local_color_table
        # Use the global color table if there's no local one
        if self.global_color_table is not None:
            return self.global_color_table
        return FALLBACK_COLOR_TABLE

    def to_image(self, index=0):
        """Compose the frame into RGBA bytes, returned with its placement on the screen."""
        frame = self.get_frame(index)
        if frame.interlaced:
            data = self.deinterlace(index)
        else:
            data = self.decode(index)
        rgba = make_rgba(data, self.get_color_table(index), frame.transparent_color_index)
        return Frame_Image(rgba, frame.left, frame.top, frame.width, frame.height)

    def composite_all(self):
        for index in range(len(self.frames)):
            yield self.to_image(index)


def parse(data, decompress=False, verbose=None):
    return Gif(data, decompress=decompress, verbose=verbose)


def load(source, decompress=False, verbose=None):
    """Parse a gif from bytes, a path, or anything with a read() method."""
    filename = None
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
    elif isinstance(source, (str, os.PathLike)):
        filename = os.fspath(source)
        with open(filename, 'rb') as f:
            data = f.read()
    elif hasattr(source, 'read'):
        data = source.read()
        if not isinstance(data, (bytes, bytearray)):
            raise GIFUsageError('%s.read() returned %s, not bytes' % (type(source).__name__, type(data).__name__))
        name = getattr(source, 'name', None)
        if isinstance(name, str):
            filename = name
    else:
        raise GIFUsageError("Can't load a gif from %s" % type(source).__name__)
    return Gif(data, filename=filename, decompress=decompress, verbose=verbose)
