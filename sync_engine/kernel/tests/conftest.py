"""
Sync kernel test configuration.

Kernel tests are synchronous and need no fixtures beyond the factories in
sync_engine.kernel.events; shared builders live here.
"""

import pytest

from sync_engine.kernel.types import Member


@pytest.fixture
def members():
    return [
        Member(id="@alice:example.com", display_name="Alice"),
        Member(id="@bob:example.com", display_name="Bob Smith"),
    ]
