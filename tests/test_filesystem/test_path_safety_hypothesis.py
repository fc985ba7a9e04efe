"""Property-based tests for media path containment."""

from __future__ import annotations

from typing import TYPE_CHECKING

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from syncnite.exceptions import ValidationError
from syncnite.filesystem.media_store import MediaStore

if TYPE_CHECKING:
    from pathlib import Path

PROPERTY_SETTINGS = settings(
    max_examples=300,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

_SEGMENT = st.one_of(
    st.sampled_from(["..", ".", "", "a", "b.jpg", "..a", "a..", "~", "%2e%2e"]),
    st.text(alphabet="abc./\\\x00-_", min_size=1, max_size=6),
)
_TAIL = st.lists(_SEGMENT, min_size=1, max_size=6).map("/".join)


class TestMediaPathContainment:
    @PROPERTY_SETTINGS
    @given(tail=_TAIL, leading_slash=st.booleans())
    def test_resolved_paths_stay_inside_root(
        self, tmp_path: Path, tail: str, leading_slash: bool
    ) -> None:
        root = tmp_path / "media"
        root.mkdir(exist_ok=True)
        store = MediaStore(root)
        candidate = f"/{tail}" if leading_slash else tail

        try:
            resolved = store.resolve(candidate)
        except ValidationError:
            return

        assert resolved.is_relative_to(root.resolve())
        assert resolved != root.resolve()
        assert "\x00" not in str(resolved)
