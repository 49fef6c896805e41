"""Gateway protocol: parameter codec, crypto, request assembly and response handling."""
