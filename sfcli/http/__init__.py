"""Parsing of HTTP Link headers for preload resources."""