import os
import tempfile
import unittest

from config_parser import Block, UnbalancedBlockError, parse
from directives import DirectiveError, Location, LocationBlock
from server_config import RouteMatcher, ServerConfig, load_config


def server_config(text):
    return ServerConfig(parse(text))


def locations(*specs):
    return [LocationBlock(Location(modifier, pattern), Block()) for modifier, pattern in specs]


class TestServerConfig(unittest.TestCase):

    def test_listen_ports_single(self):
        config = server_config("""
        http {
            server {
                listen 8080;
                location / {
                    root /data/www;
                }
            }
        }
        """)
        self.assertEqual(config.listen_ports, [8080])

    def test_listen_ports_multiple(self):
        config = server_config("""
        http {
            server { listen 8080; }
            server { listen 127.0.0.1:8081; listen [::]:8081; }
        }
        """)
        self.assertEqual(config.listen_ports, [8080, 8081, 8081])

    def test_servers_outside_http_are_ignored(self):
        config = server_config("server { listen 9000; } http { server { listen 80; } }")
        self.assertEqual(len(config.get_servers()), 1)
        self.assertEqual(config.listen_ports, [80])

    def test_unix_socket_has_no_port(self):
        config = server_config("http { server { listen unix:/run/app.sock; listen 81; } }")
        self.assertEqual(config.listen_ports, [81])

    def test_routes_single(self):
        config = server_config("""
        http {
            server {
                listen 8080;
                location / { root /data/www; }
                location /images { root /data/img; }
                location /proxy { proxy_pass http://backend; }
            }
        }
        """)
        expected = {
            8080: {
                "/": "/data/www",
                "/images": "/data/img"
            }
        }
        self.assertEqual(config.routes, expected)

    def test_routes_multiple_servers(self):
        config = server_config("""
        http {
            server {
                listen 8080;
                location / { root /data/www; }
            }
            server {
                listen 8081;
                location / { root /data/alt; }
            }
            server {
                location / { root /data/default; }
            }
        }
        """)
        expected = {
            8080: {"/": "/data/www"},
            8081: {"/": "/data/alt"},
            80: {"/": "/data/default"},
        }
        self.assertEqual(config.routes, expected)

    def test_invalid_port_raises(self):
        config = server_config("http { server { listen localhost:http; } }")
        with self.assertRaises(ValueError):
            _ = config.listen_ports
        with self.assertRaises(DirectiveError):
            _ = config.routes

    def test_match_location(self):
        config = server_config("""
        http {
            server {
                listen 80;
                location / { root /www; }
                location ~* ^/static/ { root /static; }
            }
            server {
                listen 81;
                location /api { proxy_pass http://127.0.0.1:3000; }
            }
        }
        """)
        self.assertEqual(config.match_location(80, "/static/app.js").location, Location("~*", "^/static/"))
        self.assertEqual(config.match_location(80, "/index.html").location, Location("", "/"))
        self.assertEqual(config.match_location(81, "/api/users").location, Location("", "/api"))
        self.assertIsNone(config.match_location(81, "/other"))
        self.assertIsNone(config.match_location(82, "/"))


class TestRouteMatcher(unittest.TestCase):

    def match(self, specs, uri):
        block = RouteMatcher.match_location(locations(*specs), uri)
        return block and (block.location.modifier, block.location.pattern)

    def test_longest_prefix_wins(self):
        specs = [("", "/"), ("", "/images/"), ("", "/images/icons/")]
        self.assertEqual(self.match(specs, "/images/icons/a.png"), ("", "/images/icons/"))
        self.assertEqual(self.match(specs, "/images/a.png"), ("", "/images/"))
        self.assertEqual(self.match(specs, "/docs"), ("", "/"))

    def test_exact_match_wins(self):
        specs = [("", "/"), ("=", "/"), ("~", ".*")]
        self.assertEqual(self.match(specs, "/"), ("=", "/"))
        self.assertEqual(self.match(specs, "/a"), ("~", ".*"))

    def test_regex_beats_prefix(self):
        specs = [("", "/images/"), ("~", "[.]png$"), ("~", "^/images/")]
        self.assertEqual(self.match(specs, "/images/a.png"), ("~", "[.]png$"))
        self.assertEqual(self.match(specs, "/images/a.gif"), ("~", "^/images/"))

    def test_priority_prefix_skips_regex(self):
        specs = [("^~", "/images/"), ("~", "[.]png$")]
        self.assertEqual(self.match(specs, "/images/a.png"), ("^~", "/images/"))
        self.assertEqual(self.match(specs, "/other/a.png"), ("~", "[.]png$"))

    def test_no_match(self):
        self.assertIsNone(self.match([("", "/api")], "/"))


class TestLoadConfig(unittest.TestCase):

    def write_config(self, text):
        fd, path = tempfile.mkstemp(suffix=".conf")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_load_config(self):
        path = self.write_config("http {\n    server {\n        listen 8080;\n    }\n}\n")
        config = load_config(path)
        self.assertIsInstance(config, ServerConfig)
        self.assertEqual(config.listen_ports, [8080])

    def test_load_config_strict(self):
        path = self.write_config("http { server { listen 8080; }\n")
        with self.assertRaises(UnbalancedBlockError):
            load_config(path, strict=True)


    def test_load_config_not_utf8(self):
        fd, path = tempfile.mkstemp(suffix=".conf")
        with os.fdopen(fd, "wb") as f:
            f.write(b"user \xff;\n")
        self.addCleanup(os.remove, path)
        with self.assertRaises(UnicodeDecodeError):
            load_config(path)


if __name__ == "__main__":
    unittest.main()
