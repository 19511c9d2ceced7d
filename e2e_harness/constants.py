"""Timeouts and delays used across the harness.

Centralized so CI environments can be tuned in one place. Values are seconds.
"""

# Backend startup and readiness
BACKEND_ANNOUNCE_TIMEOUT = 30.0
BACKEND_ANNOUNCE_INTERVAL = 0.1
BACKEND_READY_TIMEOUT = 30.0
BACKEND_READY_INTERVAL = 0.5
BACKEND_SLOW_START_WARNING = 5.0
STARTUP_PROGRESS_EVERY = 5.0

# Frontend dev server
FRONTEND_START_TIMEOUT = 10.0
FRONTEND_START_INTERVAL = 0.1
FRONTEND_ACCESSIBLE_TIMEOUT = 12.0
FRONTEND_ACCESSIBLE_INTERVAL = 0.5
FRONTEND_HYDRATION_SETTLE = 1.0

# Process teardown
STOP_GRACE_PERIOD = 2.0
STOP_KILL_WAIT = 2.0
OUTPUT_DRAIN_TIMEOUT = 1.0

# HTTP probes
PROBE_REQUEST_TIMEOUT = 5.0

# User provisioning
USER_CREATE_MAX_ATTEMPTS = 3
USER_CREATE_BASE_DELAY = 0.1
USER_VERIFICATION_MAX_RETRIES = 10
USER_VERIFICATION_RETRY_DELAY = 0.2
DELAY_SESSION_STORE_READY = 0.1

# Login and navigation
TIMEOUT_LOGIN_FORM_VISIBLE = 10.0
TIMEOUT_LOGIN_RESPONSE = 20.0
TIMEOUT_AUTH_CHECK = 10.0
TIMEOUT_LOGIN_NAVIGATION = 20.0
