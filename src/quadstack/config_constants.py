#!/usr/bin/env python3
"""
Configuration constants for quadstack.

This is the SINGLE SOURCE OF TRUTH for default paths and file names.
Modules import from here instead of hardcoding strings.
"""

# ============================================================================
# Configuration files
# ============================================================================

# System-wide settings file (optional, read when present)
SYSTEM_CONFIG_PATH = '/etc/quadstack/quadstack.toml'

# ============================================================================
# Host layout
# ============================================================================

DEFAULT_INSTALL_DIR = '/opt/containers'
DEFAULT_MANIFEST_URL = (
    'https://raw.githubusercontent.com/cragr/quadstack/refs/heads/n8n/container-manifest.txt'
)

# Quadlet units are picked up by the systemd generator from here
UNIT_DIR = '/etc/containers/systemd'
SYSTEMD_DIR = '/etc/systemd/system'
INIT_SQL_DIR = '/etc/containers/init-sql'

UNIT_SUFFIX = '.container'
SERVICE_SUFFIX = '.service'

# Reserved token, always seeded from the install directory and never prompted
INSTALL_DIR_TOKEN = 'INSTALL_DIR'

# ============================================================================
# Container network
# ============================================================================

DEFAULT_NETWORK_NAME = 'appnet'
NETWORK_FALLBACK_SUBNET = '10.92.0.0/24'

# ============================================================================
# PostgreSQL
# ============================================================================

PG_CONTAINER_NAME = 'postgresql'
PG_ADMIN_USER = 'postgres'
PG_READY_ATTEMPTS = 30
PG_READY_INTERVAL = 2.0

GUAC_INIT_SQL_URL = 'https://raw.githubusercontent.com/cragr/quadstack/refs/heads/n8n/initdb.sql'

# ============================================================================
# Unit manager states
# ============================================================================

# `systemctl is-enabled` answers that need no enable call
ALREADY_ENABLED_STATES = frozenset({
    'enabled',
    'enabled-runtime',
    'static',
    'indirect',
    'generated',
})

GENERATED_UNIT_MARKER = 'transient or generated'

# Timestamp format of the per-round backup directory suffix
BACKUP_STAMP_FORMAT = '%Y%m%d-%H%M%S'
