#!/usr/bin/env python3

import pygame


class Pygame_Gif:
    def __init__(self, gif):
        self.gif = gif
        self.images = [Pygame_Gif_Image(gif, index) for index in range(len(gif.frames))]


class Pygame_Gif_Image:
    def __init__(self, gif, index):
        self.image = None
        self.rect = None
        self.rgba = None
        self.gif = gif
        self.index = index

    def make_pygame_surface(self):
        if self.image is not None:
            return self.image
        frame_image = self.gif.to_image(self.index)
        dims = (frame_image.width, frame_image.height)
        size = frame_image.width * frame_image.height * 4
        # Frames without image data compose to a single pixel, frombuffer needs the full size.
        rgba = bytearray(frame_image.rgba[:size])
        rgba += bytes(size - len(rgba))
        self.rgba = rgba
        # Per pixel alpha carries the transparency, so there's no colorkey to pick.
        self.image = pygame.image.frombuffer(rgba, dims, 'RGBA')
        self.rect = pygame.Rect(frame_image.left, frame_image.top, frame_image.width, frame_image.height)
        return self.image
