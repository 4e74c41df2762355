"""Next.js route discovery for the web application."""

from dataclasses import dataclass
from pathlib import Path

APP_DIR = Path("apps") / "web" / "app"
PAGES_DIR = Path("apps") / "web" / "src" / "pages"
PAGE_FILES = ("page.tsx", "page.js")
PAGE_SUFFIXES = (".tsx", ".js")
DEFAULT_PATHS = (("home", "/"), ("api-test", "/api-test"), ("monitoring-test", "/monitoring-test"))


@dataclass(frozen=True)
class Route:
    name: str
    path: str
    url: str


def _route(base_url: str, name: str, path: str) -> Route:
    return Route(name=name, path=path, url=f"{base_url.rstrip('/')}{'' if path == '/' else path}")


def _has_page(directory: Path) -> bool:
    return any((directory / name).is_file() for name in PAGE_FILES)


def _skip_app_segment(name: str) -> bool:
    # private folders, parallel slots and dynamic segments need concrete URLs
    return name.startswith(("_", "@", "["))


def discover_app_routes(app_dir: Path, base_url: str, base_path: str = "") -> list[Route]:
    """Walk an ``app/`` directory; a directory with a page is a route and is not descended."""
    routes: list[Route] = []
    if not app_dir.is_dir():
        return routes
    if not base_path and _has_page(app_dir):
        routes.append(_route(base_url, "home", "/"))
    for entry in sorted(app_dir.iterdir()):
        if not entry.is_dir() or _skip_app_segment(entry.name):
            continue
        is_group = entry.name.startswith("(") and entry.name.endswith(")")
        route_path = base_path if is_group else f"{base_path}/{entry.name}"
        if _has_page(entry):
            path = route_path or "/"
            name = "home" if path == "/" else path.rsplit("/", 1)[-1]
            if all(r.path != path for r in routes):
                routes.append(_route(base_url, name, path))
        else:
            for route in discover_app_routes(entry, base_url, route_path):
                if all(r.path != route.path for r in routes):
                    routes.append(route)
    return routes


def discover_pages_routes(pages_dir: Path, base_url: str, base_path: str = "") -> list[Route]:
    """Walk a ``pages/`` directory, skipping ``_*`` files and the ``api`` tree."""
    routes: list[Route] = []
    if not pages_dir.is_dir():
        return routes
    for entry in sorted(pages_dir.iterdir()):
        if entry.name.startswith("_") or entry.name == "api":
            continue
        if entry.is_file() and entry.suffix in PAGE_SUFFIXES:
            stem = entry.stem
            if stem == "index":
                name = base_path.rsplit("/", 1)[-1] if base_path else "home"
                routes.append(_route(base_url, name, base_path or "/"))
            else:
                routes.append(_route(base_url, stem, f"{base_path}/{stem}"))
        elif entry.is_dir():
            routes.extend(discover_pages_routes(entry, base_url, f"{base_path}/{entry.name}"))
    return routes


def default_routes(base_url: str) -> list[Route]:
    return [_route(base_url, name, path) for name, path in DEFAULT_PATHS]


def discover_routes(project_root: Path, base_url: str) -> list[Route]:
    """Routes from the app directory, else the pages directory, else the defaults."""
    root = Path(project_root)
    routes = discover_app_routes(root / APP_DIR, base_url)
    if not routes:
        routes = discover_pages_routes(root / PAGES_DIR, base_url)
    return routes or default_routes(base_url)
