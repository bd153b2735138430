"""Domain services of the task tracker core.

- **keys**: unique ``PREFIX-n`` entity keys from a persisted counter
- **webhooks**: subscription registry and event dispatcher
"""
