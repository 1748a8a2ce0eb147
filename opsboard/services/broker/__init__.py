"""
Upstream APIs.

Modules:
  api_config   : YAML loader + dataclass for upstream endpoint definitions.
  argus_client : Retrying Argus status client with the 403 latch.
"""
