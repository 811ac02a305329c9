"""Shared test fixtures for the wpms_mover test suite."""

import pytest


@pytest.fixture()
def sample_blog_row():
    """Return a wp_blogs row for tenant 5."""
    return {
        "blog_id": 5,
        "site_id": 1,
        "domain": "a.example",
        "path": "/",
        "public": 1,
        "archived": 0,
        "deleted": 0,
    }


@pytest.fixture()
def sample_tenant_tables():
    """Return the tables of tenant 5 with a few rows each."""
    return {
        "wp_5_options": [
            {"option_id": 1, "option_name": "siteurl", "option_value": "https://a.example"},
            {"option_id": 2, "option_name": "blogname", "option_value": "A"},
        ],
        "wp_5_posts": [
            {"ID": 1, "post_title": "Hello world"},
            {"ID": 2, "post_title": "Sample Page"},
            {"ID": 3, "post_title": "About"},
        ],
    }


@pytest.fixture()
def sample_tenant_files(tmp_path):
    """Create a tenant file tree and return its root."""
    root = tmp_path / "fixture_files"
    (root / "2024" / "01").mkdir(parents=True)
    (root / "2024" / "01" / "photo.jpg").write_bytes(b"\xff\xd8jpeg")
    (root / "2024" / "01" / "photo-150x150.jpg").write_bytes(b"\xff\xd8thumb")
    (root / "2024" / "02").mkdir(parents=True)
    (root / "2024" / "02" / "report.pdf").write_bytes(b"%PDF-1.4")
    (root / "favicon.ico").write_bytes(b"ico")
    return root
