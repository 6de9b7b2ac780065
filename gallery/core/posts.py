"""
Markdown post generation for media folders.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

logger = logging.getLogger(__name__)

POST_SUBDIR = "post"

DEFAULT_TEMPLATE = """\
---
title: {{ title | tojson }}
date: {{ date.strftime("%Y-%m-%dT%H:%M:%S") }}
folder: {{ folder_id | tojson }}
categories: {{ categories | tojson }}
tags: {{ tags | tojson }}
cover: {{ (images[0] if images else "") | tojson }}
---
{% for image in images %}
![{{ image }}](/images/{{ folder_id }}/{{ image | urlencode }})
{% endfor %}
{% for video in videos %}
<video controls preload="metadata" src="/images/{{ folder_id }}/{{ video | urlencode }}"></video>
{% endfor %}
"""


@dataclass
class PostContent:
    folder_id: str
    title: str
    date: datetime
    images: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class PostWriter:
    """Renders posts into ``<content_dir>/post/<folder_id>.md``."""

    def __init__(self, content_dir: Union[str, Path], template_path: Optional[Union[str, Path]] = None):
        self.content_dir = Path(content_dir)
        self.post_dir = self.content_dir / POST_SUBDIR
        if template_path:
            template_path = Path(template_path)
            env = Environment(loader=FileSystemLoader(str(template_path.parent)), undefined=StrictUndefined)
            self._template = env.get_template(template_path.name)
        else:
            env = Environment(undefined=StrictUndefined, trim_blocks=True)
            self._template = env.from_string(DEFAULT_TEMPLATE)

    def post_path(self, folder_id: str) -> Path:
        return self.post_dir / f"{folder_id}.md"

    def render(self, content: PostContent) -> str:
        return self._template.render(
            folder_id=content.folder_id,
            title=content.title,
            date=content.date,
            images=content.images,
            videos=content.videos,
            categories=content.categories,
            tags=content.tags,
        )

    def write(self, content: PostContent) -> Optional[Path]:
        """Render and store a post; returns its path, or None when rendering failed."""
        try:
            text = self.render(content)
        except TemplateError as exc:
            logger.error("[posts] failed to render post for %s: %s", content.folder_id, exc)
            return None

        path = self.post_path(content.folder_id)
        self.post_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".md.tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
        return path

    def remove(self, folder_id: str) -> bool:
        path = self.post_path(folder_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("[posts] removed %s", path)
        return True

    def existing_ids(self) -> List[str]:
        if not self.post_dir.is_dir():
            return []
        return [p.stem for p in self.post_dir.glob("*.md")]
