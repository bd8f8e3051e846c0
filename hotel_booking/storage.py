import logging
import os
import uuid

from django.core.files.storage import default_storage
from rest_framework.exceptions import ValidationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}


def store_room_image(upload, request=None):
    """Save an uploaded room image and return its public URL."""
    ext = os.path.splitext(upload.name)[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        raise ValidationError({'image': f'Unsupported image type "{ext or upload.name}".'})

    name = default_storage.save(f'rooms/{uuid.uuid4().hex}{ext}', upload)
    url = default_storage.url(name)
    if request is not None:
        url = request.build_absolute_uri(url)
    logger.info('Stored room image %s (%s bytes)', name, upload.size)
    return url
