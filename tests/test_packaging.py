"""Tests for the installed distribution's declared dependencies."""

from __future__ import annotations

import re
from importlib.metadata import requires


class TestDeclaredDependencies:
    def test_directly_imported_libraries_are_declared(self) -> None:
        declared = {re.split(r"[<>=!~ ;\[]", req, maxsplit=1)[0].lower() for req in requires("adoflow") or []}
        assert {"click", "fastapi", "starlette", "uvicorn", "httpx"} <= declared

    def test_test_tools_live_in_the_test_extra(self) -> None:
        extras = [req for req in requires("adoflow") or [] if "extra ==" in req]
        assert any(req.startswith("pytest") for req in extras)
