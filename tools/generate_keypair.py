from solders.keypair import Keypair
from pathlib import Path
import json, sys

# Uso: python tools/generate_keypair.py [ruta-salida.json]
kp = Keypair()
secret = json.dumps(list(bytes(kp)))

if len(sys.argv) > 1:
    Path(sys.argv[1]).write_text(secret)

print(f"Public key: {kp.pubkey()}", file=sys.stderr)
print(secret)
