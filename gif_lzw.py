class Gif_LZW(object):
    """Inflate one frame's concatenated image data into palette indexes."""

    # If the code table has reached the 2**12 limit, the code table may not be added to
    maximum_bit_size = 12
    maximum_code_table_size = 1 << maximum_bit_size

    bit_ands = [2 ** i - 1 for i in range(13)]

    def __init__(self, minimum_size, data, pixel_count):
        self.minimum_size = minimum_size
        self.clear_code = 1 << minimum_size
        self.end_of_information_code = self.clear_code + 1
        self.pixel_count = pixel_count
        self.data = data

        # Every code is stored as the code it extends plus the one byte it adds.
        # The root codes are their own suffix and are never walked past.
        self.prefix = [0] * self.maximum_code_table_size
        self.suffix = [0] * self.maximum_code_table_size
        self.suffix[:self.clear_code] = range(self.clear_code)

        self.reset_code_table()

    def _get_next_code(self):
        value_buffer = 0
        value_buffer_bits = 0
        bit_ands = self.bit_ands
        for byte in self.data:
            value_buffer += byte << value_buffer_bits
            value_buffer_bits += 8
            # One byte can finish several small codes, and the code size can change between any two of them.
            while value_buffer_bits >= self.code_size:
                code_size = self.code_size
                value = value_buffer & bit_ands[code_size]
                value_buffer >>= code_size
                value_buffer_bits -= code_size
                yield value

    def parse_stream_data(self):
        # An empty image data section has nothing to inflate.
        if not self.data:
            return bytes(1)
        pixel_count = self.pixel_count
        # Localize variables due to the loop.
        prefix = self.prefix
        suffix = self.suffix
        clear_code = self.clear_code
        end_of_information_code = self.end_of_information_code
        maximum_code_table_size = self.maximum_code_table_size
        next_code_index = self.next_code_index
        stream = bytearray()
        stack = []
        prev_code = None
        first = 0
        for code in self._get_next_code():
            # Clear codes can appear at any time, even right after another one.
            if code == clear_code:
                self.reset_code_table()
                next_code_index = self.next_code_index
                prev_code = None
                continue
            # Codes past the end of the table can't be resolved, so treat them like end of information.
            if code == end_of_information_code or code > next_code_index:
                break
            if prev_code is None:
                # The first code after a clear must be in the initial code table.
                if code > clear_code:
                    break
                stream.append(code)
                prev_code = first = code
            else:
                in_code = code
                # A code that is about to be defined is the previous string plus its own first byte.
                if code == next_code_index:
                    stack.append(first)
                    code = prev_code
                while code > clear_code:
                    stack.append(suffix[code])
                    code = prefix[code]
                first = suffix[code]
                stack.append(first)
                if next_code_index < maximum_code_table_size:
                    prefix[next_code_index] = prev_code
                    suffix[next_code_index] = first
                    next_code_index += 1
                    # If the code index is crossing the next threshold (2**x).
                    if next_code_index == self.next_code_table_grow and self.code_size < self.maximum_bit_size:
                        self.set_code_size(self.code_size + 1)
                prev_code = in_code
                stack.reverse()
                stream += bytes(stack)
                stack.clear()
            if len(stream) >= pixel_count:
                break
        self.next_code_index = next_code_index
        # Truncated streams are still displayable, so pad them out with index 0.
        if len(stream) < pixel_count:
            stream += bytes(pixel_count - len(stream))
        return bytes(stream[:pixel_count])

    def reset_code_table(self):
        # Track what the next index for a code in the code table will be.
        self.next_code_index = self.end_of_information_code + 1
        self.set_code_size(self.minimum_size + 1)

    def set_code_size(self, size):
        self.code_size = size
        self.next_code_table_grow = 1 << size
