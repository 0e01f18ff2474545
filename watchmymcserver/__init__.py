"""
watchmymcserver - start and stop a Minecraft server on a daily schedule.

Runs the server JAR between a configured on and off time, appends its
output to a timestamped log, and shuts it down gracefully by sending
"stop" to its console.
"""

__version__ = "0.1.0"
