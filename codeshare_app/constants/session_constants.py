"""Session-related constants shared across the core and server layers."""

SESSION_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SESSION_CODE_LENGTH: int = 6
SESSION_CODE_MAX_ATTEMPTS: int = 100

IDLE_SESSION_TIMEOUT_SECONDS: float = 30 * 60
STUDENT_GRACE_PERIOD_SECONDS: float = 2 * 60
IDLE_SWEEP_INTERVAL_SECONDS: float = 60
CODE_UPDATE_DEBOUNCE_SECONDS: float = 0.5

DEFAULT_TEMPLATE: str = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>My page</title>
</head>
<body>
    <h1>Hello world!</h1>

</body>
</html>"""
