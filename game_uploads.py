#!/usr/bin/env python3
"""
Game Uploads - unpack uploaded HTML5 game bundles into the hosted games folder
"""

import logging
import os
import shutil
import uuid
import zipfile

from werkzeug.utils import secure_filename

from site_utils import get_file_extension, slugify

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ('.zip', '.html', '.htm')
HTML_EXTENSIONS = ('.html', '.htm')


class UploadError(ValueError):
    """Raised for bundles that cannot be hosted"""


def _safe_member_path(name):
    """Normalised relative path for a zip member, None for directories"""
    normalized = os.path.normpath(name.replace('\\', '/'))
    if normalized == '..' or normalized.startswith(('../', '/')) or ':' in normalized.split('/')[0]:
        raise UploadError(f"Unsafe path in archive: {name}")
    if name.endswith('/'):
        return None
    return normalized


def find_entry_file(game_dir):
    """
    Pick the page that starts the game: an index.html if there is one,
    otherwise the shallowest HTML file. Returns a path relative to game_dir.
    """
    candidates = []
    for root, _dirs, files in os.walk(game_dir):
        for filename in files:
            if get_file_extension(filename) not in HTML_EXTENSIONS:
                continue
            relative = os.path.relpath(os.path.join(root, filename), game_dir).replace(os.sep, '/')
            is_index = filename.lower() in ('index.html', 'index.htm')
            candidates.append((not is_index, relative.count('/'), relative))
    if not candidates:
        return None
    return sorted(candidates)[0][2]


def _extract_zip(stream, target_dir, max_bytes):
    try:
        archive = zipfile.ZipFile(stream)
    except zipfile.BadZipFile:
        raise UploadError('Uploaded file is not a valid zip archive')

    total = 0
    with archive:
        members = []
        for info in archive.infolist():
            relative = _safe_member_path(info.filename)
            if relative is None:
                continue
            total += info.file_size
            if total > max_bytes:
                raise UploadError('Game bundle is too large once extracted')
            members.append((info, relative))

        for info, relative in members:
            destination = os.path.join(target_dir, relative)
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            with archive.open(info) as source, open(destination, 'wb') as out:
                shutil.copyfileobj(source, out)
    return total


def save_game_bundle(file_storage, title, games_dir, max_bytes=100 * 1024 * 1024):
    """
    Store an uploaded game (zip bundle or single HTML page).

    Returns the metadata used to create the game entry:
    {'gameFolder', 'entryFile', 'gameType', 'fileSize'}
    """
    filename = secure_filename(file_storage.filename or '')
    extension = get_file_extension(filename)
    if extension not in ALLOWED_EXTENSIONS:
        raise UploadError(f"Unsupported file type, expected one of: {', '.join(ALLOWED_EXTENSIONS)}")

    folder = f"{slugify(title) or 'game'}-{uuid.uuid4().hex[:8]}"
    target_dir = os.path.join(games_dir, folder)
    os.makedirs(target_dir, exist_ok=True)

    try:
        if extension == '.zip':
            file_size = _extract_zip(file_storage.stream, target_dir, max_bytes)
        else:
            destination = os.path.join(target_dir, filename)
            file_storage.save(destination)
            file_size = os.path.getsize(destination)
            if file_size > max_bytes:
                raise UploadError('Game file is too large')

        entry_file = find_entry_file(target_dir)
        if not entry_file:
            raise UploadError('No HTML entry file found in the uploaded game')
    except Exception:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise

    logger.info(f"Stored game bundle {folder} ({file_size} bytes, entry {entry_file})")
    return {
        'gameFolder': folder,
        'entryFile': entry_file,
        'gameType': 'html5',
        'fileSize': file_size,
    }
