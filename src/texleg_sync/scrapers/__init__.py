"""Remote source access: FTP bill history documents and HTTP bill text."""
