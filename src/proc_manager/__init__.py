"""Process snapshot and termination API for Linux hosts."""
