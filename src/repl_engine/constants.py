"""
REPL Engine - Protocol Constants
=================================
Wire-level bytes of the MicroPython REPL protocols.
"""

# Friendly REPL control
INTERRUPT = b'\x03'          # Ctrl+C
SOFT_RESET = b'\x04'         # Ctrl+D at the friendly prompt
NEWLINE = b'\r\n'

# Raw REPL
ENTER_RAW = b'\x01'          # Ctrl+A
EXIT_RAW = b'\x02'           # Ctrl+B
END_OF_DATA = b'\x04'        # Ctrl+D, terminates a program buffer
RAW_PROMPT = '>'
RAW_BANNER = 'raw REPL'

# Raw-paste negotiation
RAW_PASTE_PROBE = b'\x05A\x01'
RAW_PASTE_ACK = b'R\x01'
RAW_PASTE_DECLINE = b'R\x00'
LEGACY_PREFIX = b'ra'        # start of "raw REPL; CTRL-B to exit"

# Raw-paste flow control
FLOW_CONTINUE = 0x01
FLOW_ABORT = 0x04
