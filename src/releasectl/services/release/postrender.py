"""Post-rendering: pipe rendered manifests through an external program.

The combined manifest stream is written to the program's stdin and its
stdout replaces the rendered output. Source comments are kept in the stream
so documents can be grouped back by template path afterwards.
"""

from __future__ import annotations

import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

import structlog

from releasectl.services.release.exceptions import RenderError
from releasectl.services.release.manifests import (
    YAML_EXTENSIONS,
    join_manifests,
    split_documents,
)

logger = structlog.get_logger()

POST_RENDER_TIMEOUT_SECONDS = 60
POST_RENDERED_PATH = "post-rendered.yaml"


class PostRenderer(ABC):
    """Transforms a rendered manifest stream."""

    @abstractmethod
    def run(self, rendered: str) -> str:
        """Return the modified stream.

        Raises:
            RenderError: If post-rendering fails.
        """


def resolve_binary(binary: str) -> str:
    """Resolve ``binary`` as an absolute path, a relative path, or a PATH lookup.

    Raises:
        RenderError: If no executable can be found.
    """
    path = Path(binary)
    if path.is_absolute() or "/" in binary:
        resolved = path.resolve()
        if resolved.is_file():
            return str(resolved)
        raise RenderError(f"post-renderer {binary} not found")

    found = shutil.which(binary)
    if not found:
        raise RenderError(f"post-renderer {binary} not found in PATH")
    return found


class ExecPostRenderer(PostRenderer):
    """Runs an executable as a post-renderer."""

    def __init__(
        self,
        binary: str,
        args: list[str] | None = None,
        *,
        timeout: int = POST_RENDER_TIMEOUT_SECONDS,
    ) -> None:
        self._binary = resolve_binary(binary)
        self._args = list(args or [])
        self._timeout = timeout

    def run(self, rendered: str) -> str:
        cmd = [self._binary, *self._args]
        logger.debug("running_post_renderer", cmd=cmd)
        try:
            result = subprocess.run(
                cmd,
                input=rendered,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as e:
            raise RenderError(
                f"post-renderer {self._binary} exited with {e.returncode}: {e.stderr.strip()}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise RenderError(
                f"post-renderer {self._binary} timed out after {self._timeout}s"
            ) from e
        except OSError as e:
            raise RenderError(f"post-renderer {self._binary} could not run: {e}") from e

        if not result.stdout.strip():
            raise RenderError(f"post-renderer {self._binary} produced no output")
        return result.stdout


def post_render(files: Mapping[str, str], post_renderer: PostRenderer) -> dict[str, str]:
    """Run ``post_renderer`` over all YAML files and regroup its output by source.

    Documents that lose their source comment are collected under
    ``post-rendered.yaml``.
    """
    documents = []
    for path in sorted(files):
        if path.endswith(YAML_EXTENSIONS):
            documents.extend(split_documents(files[path], path))

    output = post_renderer.run(join_manifests(documents))

    regrouped: dict[str, list[str]] = {}
    for document in split_documents(output, POST_RENDERED_PATH):
        regrouped.setdefault(document.path, []).append(document.content)
    return {path: "---\n".join(chunks) for path, chunks in regrouped.items()}
