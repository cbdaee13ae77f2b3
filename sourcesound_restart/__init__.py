"""SourceSound Restart: keeps SoundSource clear of its trial-mode noise.

Periodically checks how long SoundSource has been running and restarts
it before the trial timer injects noise into the audio path.  Runs as a
launchd LaunchAgent on macOS.
"""

__version__ = "1.0.1"
__app_name__ = "SourceSound Restart"
