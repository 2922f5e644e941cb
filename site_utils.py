#!/usr/bin/env python3
"""
Site Utilities - Common helpers for slugs, image sniffing and text cleanup
"""

import os
import re
import unicodedata

from bs4 import BeautifulSoup

IMAGE_MIMETYPES = {
    'png': 'image/png',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'webp': 'image/webp',
}

# Anything this small is an error page or a tracking pixel, not artwork
MIN_IMAGE_BYTES = 100


def slugify(name):
    """Turn a title or category name into a URL slug"""
    if not name:
        return ""

    # Fold accented characters to their base forms, then drop the rest
    normalized = unicodedata.normalize('NFKD', name)
    normalized = normalized.encode('ascii', 'ignore').decode('ascii').lower()

    # Everything that is not a letter or digit becomes a separator
    normalized = re.sub(r'[^a-z0-9]+', '-', normalized)
    return normalized.strip('-')


def detect_image_type(data):
    """
    Detect an image format from its leading bytes.

    Args:
        data: Raw file content

    Returns:
        'png', 'jpeg', 'gif' or 'webp', or None if the content is not a
        recognised image
    """
    if not data or len(data) <= MIN_IMAGE_BYTES:
        return None

    if data[:4] == b'\x89PNG':
        return 'png'
    if data[:3] == b'\xff\xd8\xff':
        return 'jpeg'
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return 'gif'
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    return None


def image_mimetype(kind):
    """Mimetype for a detected image type, PNG when unknown"""
    return IMAGE_MIMETYPES.get(kind, 'image/png')


def get_file_extension(file_path: str) -> str:
    """
    Get the file extension from a file path.

    Args:
        file_path: Path to the file

    Returns:
        File extension in lowercase (e.g., '.png', '.zip')
    """
    return os.path.splitext(file_path)[1].lower()


def strip_html(text):
    """Reduce user supplied text to plain text"""
    if not text:
        return ""
    return BeautifulSoup(text, 'html.parser').get_text().strip()


def parse_limit(value, default, maximum=100):
    """Parse a ?limit= query value, falling back to default on junk"""
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    if limit <= 0:
        return default
    return min(limit, maximum)


def is_url_or_path(value) -> bool:
    """True for values that point at a resource (rendered as images by the CMS)"""
    return isinstance(value, str) and (value.startswith('http') or value.startswith('/'))
