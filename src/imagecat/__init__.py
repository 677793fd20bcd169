"""
IMAGECAT - Incremental Image Directory Catalog

Crawls a paginated public image directory in small bounded batches and keeps
a deduplicated, sorted snapshot of the image slugs it has discovered. The
snapshot is served through a paginated listing and wildcard search API.

Copyright (c) 2025
Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "IMAGECAT Team"
__status__ = "Development"
