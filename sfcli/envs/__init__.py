"""Route map decoding and loading of .env files."""