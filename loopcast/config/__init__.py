"""
Configuration package for Loopcast.

Static constants live in `common` (process supervision, logging, exit codes) and
`stream` (encoder arguments, playlist formats). The runtime settings surface,
merged from defaults, `config.user.yaml`, a `.env` file and the environment,
lives in `settings`.
"""
