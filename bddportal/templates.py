"""Configuration file templates."""

CONFIG_TEMPLATE = """\
# bddportal configuration
# Values may reference `vars` entries and environment variables, e.g.
#   api_key: ${oc.env:BDDPORTAL_API_KEY}
# Any key can also be overridden with a BDDPORTAL_<KEY> environment variable.

vars:
  project_name: my_project

defaults:
  enabled: true
  endpoint: https://reportportal.example.com
  project: ${project_name}
  api_key: null  # or set BDDPORTAL_API_KEY
  launch: bddportal launch
  mode: DEFAULT
  attributes:
    - "suite:regression"
  skipped_issue: true
  exception_truncate: true
  log_level: INFO

profiles:
  debug:
    mode: DEBUG
    launch: bddportal debug launch

  record:
    record_events: reports/events.jsonl
"""
