PACKAGE_FORMAT_VERSION = "2.0.0"
DEFAULT_PACKET_EXPIRATION_DAYS = 14
DEFAULT_MAX_PACKET_EXTENSIONS = 2
DEFAULT_PACKET_EXTENSION_DAYS = 7

# Display colours assigned to participants by step position.
PARTICIPANT_COLORS = (
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
    "#f97316",
)


def participant_color(index: int) -> str:
    return PARTICIPANT_COLORS[index % len(PARTICIPANT_COLORS)]

# Windows used by the attention report.
PACKET_EXPIRY_WARNING_HOURS = 48
UPCOMING_DEADLINE_DAYS = 7
