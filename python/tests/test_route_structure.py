"""Structural tests for route code.

Verifies that routes follow the service/route separation rule:
- Routes may not contain raw DB access
- Routes may not call providers directly
"""

import ast
from pathlib import Path

import pytest


def get_routes_dir() -> Path:
    """Path to chatroute/api/routes (tests/ and chatroute/ are siblings)."""
    return Path(__file__).parent.parent / "chatroute" / "api" / "routes"


def get_all_route_files() -> list[Path]:
    return sorted(
        f for f in get_routes_dir().iterdir() if f.suffix == ".py" and f.name != "__init__.py"
    )


def _imported_modules(tree: ast.Module) -> set[str]:
    modules = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules.add(node.module)
            modules.update(f"{node.module}.{alias.name}" for alias in node.names)
    return modules


@pytest.fixture
def route_files() -> list[Path]:
    files = get_all_route_files()
    assert files, "no route modules found"
    return files


class TestForbiddenImports:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy.select",
        "sqlalchemy.insert",
        "sqlalchemy.update",
        "sqlalchemy.delete",
        "sqlalchemy.text",
        "chatroute.db.engine",
        "chatroute.db.models",
        "chatroute.services.llm.openai",
        "chatroute.services.llm.anthropic",
        "chatroute.services.llm.gemini",
        "httpx",
        "redis",
    )

    FORBIDDEN_CALLS = ("execute", "scalar", "scalars", "query", "add", "commit")

    def test_no_forbidden_imports(self, route_files: list[Path]):
        for path in route_files:
            modules = _imported_modules(ast.parse(path.read_text()))
            bad = sorted(m for m in modules if m.startswith(self.FORBIDDEN_PREFIXES))
            assert not bad, f"{path.name} imports {bad}"

    def test_no_raw_db_operations_in_routes(self, route_files: list[Path]):
        for path in route_files:
            for node in ast.walk(ast.parse(path.read_text())):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and isinstance(node.func.value, ast.Name)
                    and node.func.value.id == "db"
                ):
                    assert node.func.attr not in self.FORBIDDEN_CALLS, (
                        f"{path.name} calls db.{node.func.attr}"
                    )


class TestRouterShape:
    def test_all_routes_have_router(self, route_files: list[Path]):
        for path in route_files:
            tree = ast.parse(path.read_text())
            names = {
                target.id
                for node in ast.walk(tree)
                if isinstance(node, ast.Assign)
                for target in node.targets
                if isinstance(target, ast.Name)
            }
            assert "router" in names, f"{path.name} defines no router"

    def test_chat_routes_registered(self, app):
        paths = app.openapi()["paths"]
        operations = {(path, method.upper()) for path, ops in paths.items() for method in ops}

        assert ("/chat", "POST") in operations
        assert ("/chat/stream", "POST") in operations
        assert ("/chat/sessions", "GET") in operations
        assert ("/chat/history", "GET") in operations
        assert ("/chat/{session_id}", "GET") in operations
        assert ("/chat/{session_id}", "PATCH") in operations
        assert ("/chat/{session_id}", "DELETE") in operations
        assert ("/route", "POST") in operations
        assert ("/health", "GET") in operations

    def test_history_is_declared_before_session_detail(self, app):
        paths = list(app.openapi()["paths"])

        assert paths.index("/chat/history") < paths.index("/chat/{session_id}")
