# fleet_engine/domain/templates/systemd.py
"""systemd unit template for backend and frontend processes."""


UNIT_TEMPLATE = """\
# Managed by fleet-engine. Local edits are overwritten.
[Unit]
Description={{description}}
After={{after}}
Wants=network-online.target
StartLimitIntervalSec=0

[Service]
Type=simple
User={{user}}
WorkingDirectory={{working_directory}}
EnvironmentFile={{environment_file}}
Environment=PORT={{port}}
Environment=FLEET_REVISION={{revision}}
ExecStart={{exec_start}}
Restart=always
RestartSec=2
RestartSteps=6
RestartMaxDelaySec=120
KillSignal=SIGTERM
TimeoutStopSec=30

[Install]
WantedBy=multi-user.target
"""
