"""Extensions shipped with the host. Each module here is installable as ./<name>.py."""
