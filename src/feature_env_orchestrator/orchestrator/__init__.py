"""Feature environment orchestration components.

- Settings loaded from the environment and `.env`
- Structured logging
- Prerequisite checks and name-conflict handling
- Provisioning and teardown driven through the command gateway
"""
