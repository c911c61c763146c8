"""Parsing and prettifying of PHP, FPM, Symfony and JSON log lines."""