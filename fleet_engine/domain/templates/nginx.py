# fleet_engine/domain/templates/nginx.py
"""nginx server-block templates for the edge router."""


SITE_HEADER = "# Managed by fleet-engine. Local edits are overwritten.\n"


# Answers ACME challenges for any hostname, including ones not yet routed.
ACME_SERVER_TEMPLATE = """\
server {
    listen 80 default_server;
    listen [::]:80 default_server;
    server_name _;

    location /.well-known/acme-challenge/ {
        root {{acme_webroot}};
    }

    location / {
        return 404;
    }
}
"""


_PROXY_BLOCK = """\
    location / {
        proxy_pass http://127.0.0.1:{{port}};
        proxy_http_version 1.1;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_read_timeout 300s;
    }
"""


PLAIN_SERVER_TEMPLATE = """\
server {
    listen 80;
    listen [::]:80;
    server_name {{hostname}};

    location /.well-known/acme-challenge/ {
        root {{acme_webroot}};
    }

""" + _PROXY_BLOCK + "}\n"


TLS_SERVER_TEMPLATE = """\
server {
    listen 80;
    listen [::]:80;
    server_name {{hostname}};

    location /.well-known/acme-challenge/ {
        root {{acme_webroot}};
    }

    location / {
        return 301 https://$host$request_uri;
    }
}

server {
    listen 443 ssl;
    listen [::]:443 ssl;
    server_name {{hostname}};

    ssl_certificate {{certificate_path}};
    ssl_certificate_key {{key_path}};
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_session_cache shared:fleet_ssl:10m;

""" + _PROXY_BLOCK + "}\n"
