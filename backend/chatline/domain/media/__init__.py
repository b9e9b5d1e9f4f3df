"""Media storage exports."""

from .storage import (  # noqa: F401
	POLICIES,
	LocalMediaStore,
	MediaPolicy,
	StoredMedia,
	Upload,
	get_store,
	release,
	set_store,
)
