"""Engine-wide constants.

This module defines constants used throughout the history engine
to avoid magic values and ensure consistency.
"""

# Rendering of temporal values (day.month.year hour:minute:second)
DEFAULT_DATE_TIME_FORMAT = "%d.%m.%Y %H:%M:%S"

# Rendering of booleans in scalar changes
BOOLEAN_TRUE = "1"
BOOLEAN_FALSE = ""

# Field name used by creation entries
CREATION_FIELD = "entity"

# Enumeration payloads
ENUM_PAYLOAD_TYPE = "enum"
ENUM_TRANSLATION_SUFFIX = ".label"

# Join-record translation keys: pivot.<field>.<action>
PIVOT_TRANSLATION_PREFIX = "pivot"
PIVOT_ACTION_PREFIX = "pivot_"

# String column lengths
MAX_ACTOR_ID_LENGTH = 255
MAX_SUBJECT_TYPE_LENGTH = 100
MAX_SUBJECT_ID_LENGTH = 255
MAX_REQUEST_ID_LENGTH = 64
MAX_SEVERITY_LENGTH = 10

# Session.info keys used by the listener
SESSION_STAGED_KEY = "entity_history.staged"
SESSION_CREATED_KEY = "entity_history.created"
