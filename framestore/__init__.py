"""
framestore - storage integration and caching for a photo frame library.

Connects local folders and Google Photos to the photo catalog, keeps remote
bytes in a content-addressable LRU cache, and drives the Google Photos
Picker session protocol.
"""

__version__ = "1.0.0"
