"""Tests for the public import surface."""

import importlib

import pytest

PACKAGES = [
    "billing_admin",
    "billing_admin.adapters",
    "billing_admin.backup",
    "billing_admin.config",
    "billing_admin.schema",
]


class TestExports:
    """Every name in __all__ resolves."""

    @pytest.mark.parametrize("module_name", PACKAGES)
    def test_all_names_importable(self, module_name):
        """__all__ lists only names the package defines."""
        module = importlib.import_module(module_name)
        missing = [name for name in module.__all__ if not hasattr(module, name)]
        assert missing == []

    def test_top_level_operations(self):
        """The backup operations are available from the package root."""
        import billing_admin

        for name in ("backup_database", "restore_database", "list_backups", "open_store"):
            assert name in billing_admin.__all__

    def test_version(self):
        """Package carries a version string."""
        import billing_admin

        assert billing_admin.__version__ == "0.1.0"
