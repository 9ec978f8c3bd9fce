"""External storage collaborators."""

from .photos import LocalPhotoStorage, PhotoRejectedError, PhotoStorage, PhotoUpload, decode_data_url

__all__ = [
    "LocalPhotoStorage",
    "PhotoRejectedError",
    "PhotoStorage",
    "PhotoUpload",
    "decode_data_url",
]
