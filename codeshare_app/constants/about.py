"""Static metadata describing CodeShare Classroom."""

APP_NAME = "CodeShare Classroom"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "CodeShare Classroom is a live HTML classroom built with FastAPI. "
    "Teachers open a session, students join with a six-character code, and the "
    "teacher pushes templates, tasks and hints while watching every editor live."
)
