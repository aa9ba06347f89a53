from __future__ import annotations

# Tag names shared by the tag registry, the file store and the providers.
# Keep these centralized to reduce magic strings and accidental divergence.

ALBUM = "album"
ALBUM_ARTISTS = "album_artists"
COMMENT = "comment"
DESCRIPTION = "description"
DISC = "disc"
DISC_COUNT = "disc_count"
GENRES = "genres"
LYRICS = "lyrics"
PERFORMERS = "performers"
PERFORMERS_ROLE = "performers_role"
SUBTITLE = "subtitle"
TITLE = "title"
TRACK = "track"
TRACK_COUNT = "track_count"
YEAR = "year"
COVER = "cover"

# Virtual tags never reach the file.
URI = "uri"
FILE_PATH = "file_path"
STATE = "state"
LOADING_STATE = "loading_state"
INCREMENTAL_NUMBER = "incremental_number"
HAS_COVER = "has_cover"
LISTENERS_COUNT = "listeners_count"
