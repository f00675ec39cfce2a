from __future__ import annotations

import os

from starlette.exceptions import HTTPException
from starlette.responses import Response
from starlette.staticfiles import StaticFiles
from starlette.types import Scope


class PublicFiles(StaticFiles):
    """Asset root with directory index pages (`/docs/` -> `docs/index.html`).

    Misses always surface as HTTPException(404) so the not-found stage decides
    between the HTML fallback and the JSON 404, even if the root has a 404.html.
    The directory may not exist yet; until it does every lookup is a miss.
    """

    def __init__(self, directory: str) -> None:
        super().__init__(directory=directory, html=True, check_dir=False)

    async def check_config(self) -> None:
        if self.directory is not None and not os.path.isdir(self.directory):
            return
        await super().check_config()

    async def get_response(self, path: str, scope: Scope) -> Response:
        response = await super().get_response(path, scope)
        if response.status_code == 404:
            raise HTTPException(status_code=404)
        return response
