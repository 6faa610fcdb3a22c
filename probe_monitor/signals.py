from blinker import signal

# Transport input
notification_received = signal("probe-notification-received")
target_requested = signal("probe-target-requested")

# Persistence output
device_discovered = signal("probe-device-discovered")
reading_recorded = signal("probe-reading-recorded")

# UI / alerting output
state_changed = signal("probe-state-changed")

# Rejections and failures, counted for observability
decode_failed = signal("probe-decode-failed")
reading_rejected = signal("probe-reading-rejected")
no_usable_reading = signal("probe-no-usable-reading")
