"""
Byte sources for the reader: a serial port or a TCP connection.

Both are opened through pyserial with blocking reads, so read(n) only
returns early when the connection fails. For TCP, pyserial's socket://
handler raises SerialException once the peer disconnects.

To test the serial line in bash:
stty -F /dev/serial0 2400 cs8 parenb -parodd -cstopb raw; xxd /dev/serial0

OR
python3 -m serial.tools.miniterm /dev/serial0 2400 --parity E
"""

import serial

from smart_meter.log import logger

PARITIES = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}

BYTESIZES = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

STOPBITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}


def is_tcp_address(port: str) -> bool:
    return ":" in port and not port.startswith("/")


def open_stream(port, baudrate=2400, parity="E", bytesize=8, stopbits=1):
    """
    Open the byte source described by ``port``.

    Args:
      :param str port: serial device (eg /dev/serial0) or host:port
      :param int baudrate:
      :param str parity: N, E or O
      :param int bytesize: 5..8
      :param int stopbits: 1 or 2

    Returns:
      serial.Serial (or the socket:// subclass), opened
    """
    if is_tcp_address(port):
        url = port if "://" in port else f"socket://{port}"
        logger.info("tcp_source_opening", url=url)
        return serial.serial_for_url(url, timeout=None)

    try:
        tty = serial.Serial()
        tty.port = port
        tty.baudrate = baudrate
        tty.parity = PARITIES[parity.upper()]
        tty.bytesize = BYTESIZES[bytesize]
        tty.stopbits = STOPBITS[stopbits]
        tty.xonxoff = False
        tty.rtscts = False
        tty.timeout = None
    except KeyError as e:
        raise ValueError(f"unsupported serial setting {e.args[0]!r}") from None

    logger.info(
        "serial_port_configured",
        port=port,
        baudrate=baudrate,
        parity=parity,
        bytesize=bytesize,
        stopbits=stopbits,
    )
    tty.open()
    logger.debug("serial_port_opened", port=port)
    return tty
