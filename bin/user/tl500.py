# Arexx TL-500 driver for weewx
# $Id$
#
# Copyright 2015 Luc Heijst, Matthew Wall
#
# This program is free software: you can redistribute it and/or modify it under
# the terms of the GNU General Public License as published by the Free Software
# Foundation, either version 3 of the License, or any later version.
#
# This program is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.
#
# See http://www.gnu.org/licenses/
#

"""
Classes and functions for interfacing with Arexx TL-500 logging systems.

The TL-500 is a USB base station that receives data from Arexx wireless
sensors: TL-3TSN temperature sensors and TSN-TH70E temperature/humidity
sensors.  The base station has a temperature sensor of its own.

The base station does not push data.  The host asks for data by writing a
request frame and then reading a response frame.  When no sensor has sent
anything since the last request, the response is an empty frame.

-------------------------------------------------------------------------------
USB

Vendor ID:   0x0451
Product ID:  0x3211

Two bulk endpoints are used:

  0x01  down (OUT, host to logger)
  0x81  up   (IN, logger to host)

All frames are 64 bytes in both directions.

-------------------------------------------------------------------------------
Command frames (host to logger)

000:  04 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00  ...  Prime
000:  03 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00  ...  Request

00:    command
01-63: 00

The prime command is sent once, before polling starts.  The logger does not
answer it.

The request command is sent before every read of the up endpoint.  It is
written without a timeout.  The read that follows uses a timeout of 1000 ms.

-------------------------------------------------------------------------------
Response frame (logger to host)

000:  00 0a 72 22 0c 17 5b 1e 00 00 00 00 00 00 00 00  ...

00-01: marker; 00 00 means there is no reading in this frame
02-03: sensor id, low byte first
04-05: raw value, high byte first
06-09: elapsed time, low byte first
10-63: unused

The example above is sensor 8818 (0x2272) with raw value 3095 (0x0c17).
The unit and epoch of the elapsed time counter are not known, so it is
reported as a plain counter.

-------------------------------------------------------------------------------
Sensor classes

The sensor class is determined by the sensor id.  Ids below 10000 are
TL-3TSN temperature sensors and the base station itself.  TSN-TH70E sensors
have ids of 10000 and up and report temperature and humidity under two
consecutive ids; the even id carries the temperature, the odd id carries the
humidity.

  id < 10000           base-unit              raw * 0.0078            degree_C
  id >= 10000, even    temperature-secondary  -39.58 + raw * 0.01     degree_C
  id >= 10000, odd     humidity               0.6 + raw * 0.03328     percent

The unit label is '%RH' only for odd ids above 10000; every other id is
labelled as a temperature.  For id 10000 itself the formula and label are
applied as listed, since no TSN-TH70E with that id has been seen.

-------------------------------------------------------------------------------
Polling

Step 1.  Write the prime command once.  A failure is logged but polling
         starts anyway.

Step 2.  Write the request command.

Step 3.  Read 64 bytes from the up endpoint.  Anything other than a complete
         64 byte frame is a failed transfer.  Report it and go to step 2
         immediately.

Step 4.  If the frame is empty, wait a second and go to step 2.

Step 5.  Decode and calibrate the frame, report the reading, wait a second
         and go to step 2.

Polling stops after 10000 requests, when a stop is requested, or when the
logging system disappears from the USB.  A stop takes effect before the
next request; a transfer that is in progress is never interrupted.
"""

from collections import namedtuple
import errno
import logging
import optparse
import queue
import sys
import threading
import time

import usb.core
import usb.util

import weewx
import weewx.drivers
import weeutil.weeutil

DRIVER_NAME = 'TL500'
DRIVER_VERSION = '0.1'


def loader(config_dict, _):
    return TL500Driver(**config_dict[DRIVER_NAME])


def configurator_loader(_):
    return TL500Configurator()


def confeditor_loader():
    return TL500ConfEditor()


log = logging.getLogger(__name__)


def logmsg(level, msg):
    log.log(level, '%s: %s' % (threading.current_thread().name, msg))


def logdbg(msg):
    logmsg(logging.DEBUG, msg)


def loginf(msg):
    logmsg(logging.INFO, msg)


def logcrt(msg):
    logmsg(logging.CRITICAL, msg)


def logerr(msg):
    logmsg(logging.ERROR, msg)


VENDOR_ID = 0x0451
PRODUCT_ID = 0x3211

ENDPOINT_DOWN = 0x01
ENDPOINT_UP = 0x81
FRAME_SIZE = 64

CMD_PRIME = 0x04
CMD_REQUEST = 0x03

WRITE_TIMEOUT = 0  # no timeout
DEFAULT_READ_TIMEOUT = 1000  # ms
DEFAULT_MAX_ITERATIONS = 10000
DEFAULT_QUIESCENT_DELAY = 1.0  # seconds
RETRY_WAIT = 5  # seconds between sessions that produced only errors

# ENODEV from the errno mapping, -4 is LIBUSB_ERROR_NO_DEVICE
NO_DEVICE_ERRORS = (errno.ENODEV, -4)

UNIT_TEMPERATURE = '°C'
UNIT_HUMIDITY = '%RH'

CLASS_BASE_UNIT = 'base-unit'
CLASS_TEMPERATURE_SECONDARY = 'temperature-secondary'
CLASS_HUMIDITY = 'humidity'

FORMAT_VERBOSE = 0
FORMAT_CSV = 1
FORMAT_RAW = 2

format_names = {
    FORMAT_VERBOSE: 'verbose',
    FORMAT_CSV: 'csv',
    FORMAT_RAW: 'raw',
}


def to_int(v):
    """Integer from a config value; strings may be decimal or 0x hex."""
    if isinstance(v, str):
        return int(v, 0)
    return int(v)


def hex_str(buf, sep=' '):
    return sep.join(['%02x' % x for x in buf])


def print_dict(data):
    for x in sorted(data.keys()):
        if x == 'dateTime':
            print('%s: %s' % (x, weeutil.weeutil.timestamp_to_string(data[x])))
        else:
            print('%s: %s' % (x, data[x]))


class DeviceNotFound(weewx.WeeWxIOError):
    """raised when no logging system is found on the USB"""


class TransferError(Exception):
    """raised when a bulk transfer does not complete"""


class IncompleteTransfer(TransferError):
    """raised when fewer bytes than requested were transferred

    status is the errno reported by the USB stack, or 0 when the transfer
    itself succeeded but came up short."""

    def __init__(self, requested, actual, status=0):
        self.requested = requested
        self.actual = actual
        self.status = status
        super(IncompleteTransfer, self).__init__(
            'incomplete transfer: status=%s actual=%s requested=%s' %
            (status, actual, requested))


class DeviceLost(IncompleteTransfer):
    """raised when the logging system is no longer on the USB"""


class FrameError(Exception):
    """raised when a frame cannot be decoded"""


class EmptyFrame(FrameError):
    """raised when the logger has no reading for this request"""


DecodedFields = namedtuple('DecodedFields',
                           ['sensor_id', 'raw_value', 'elapsed'])

SensorReading = namedtuple('SensorReading',
                           ['sensor_id', 'raw_value', 'measurement', 'unit',
                            'elapsed', 'captured_at', 'frame'])


class Decode(object):

    @staticmethod
    def isEmpty(buf):
        return buf[0] == 0 and buf[1] == 0

    @staticmethod
    def toSensorId(buf):
        return (buf[3] << 8) | buf[2]

    @staticmethod
    def toRawValue(buf):
        # high byte first
        value = 0
        for i in range(4, 6):
            value = (value << 8) | buf[i]
        return value

    @staticmethod
    def toElapsed(buf):
        # low byte first
        value = 0
        for i in range(9, 5, -1):
            value = (value << 8) | buf[i]
        return value


def decode_frame(buf):
    """Extract the sensor id, raw value and elapsed counter from a response
    frame.  Raises EmptyFrame if the frame carries no reading."""
    if Decode.isEmpty(buf):
        raise EmptyFrame('no reading in frame')
    return DecodedFields(Decode.toSensorId(buf),
                         Decode.toRawValue(buf),
                         Decode.toElapsed(buf))


def calibration_class(sensor_id):
    if sensor_id < 10000:
        return CLASS_BASE_UNIT
    if sensor_id % 2 == 0:
        return CLASS_TEMPERATURE_SECONDARY
    return CLASS_HUMIDITY


def get_measurement(sensor_id, raw_value):
    if sensor_id < 10000:
        return raw_value * 0.0078
    if sensor_id % 2 == 0:
        return -39.58 + raw_value * 0.01
    return 0.6 + raw_value * 0.03328


def get_unit(sensor_id):
    # strictly above 10000, unlike the formula selection
    if sensor_id > 10000 and sensor_id % 2 != 0:
        return UNIT_HUMIDITY
    return UNIT_TEMPERATURE


def calibrate(sensor_id, raw_value):
    return get_measurement(sensor_id, raw_value), get_unit(sensor_id)


def make_reading(buf, ts=None):
    """Decode and calibrate a response frame into a SensorReading."""
    fields = decode_frame(buf)
    measurement, unit = calibrate(fields.sensor_id, fields.raw_value)
    if ts is None:
        ts = int(time.time())
    return SensorReading(sensor_id=fields.sensor_id,
                         raw_value=fields.raw_value,
                         measurement=measurement,
                         unit=unit,
                         elapsed=fields.elapsed,
                         captured_at=ts,
                         frame=bytes(buf))


class TL500Config(object):
    """Protocol constants and polling parameters.

    vendor_id, product_id: USB identifiers of the logging system.
    [Default is 0x0451, 0x3211]

    read_timeout: How long to wait for a response frame, in milliseconds.
    [Default is 1000]

    max_iterations: Number of requests in one polling session.
    [Default is 10000]

    quiescent_delay: How long to wait after a reading or an empty frame, in
    seconds.  There is no wait after a failed transfer.
    [Default is 1.0]

    debug_comm: 0=no frame dumps; 1=first 16 bytes; 2=full frames
    [Default is 0]

    The endpoints, the frame size, the command bytes and the write timeout
    are part of the protocol and cannot be set from the configuration.
    """

    def __init__(self, vendor_id=VENDOR_ID, product_id=PRODUCT_ID,
                 read_timeout=DEFAULT_READ_TIMEOUT,
                 max_iterations=DEFAULT_MAX_ITERATIONS,
                 quiescent_delay=DEFAULT_QUIESCENT_DELAY,
                 debug_comm=0):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.endpoint_down = ENDPOINT_DOWN
        self.endpoint_up = ENDPOINT_UP
        self.frame_size = FRAME_SIZE
        self.cmd_prime = CMD_PRIME
        self.cmd_request = CMD_REQUEST
        self.write_timeout = WRITE_TIMEOUT
        self.read_timeout = read_timeout
        self.max_iterations = max_iterations
        self.quiescent_delay = quiescent_delay
        self.debug_comm = debug_comm

    @classmethod
    def from_stn_dict(cls, stn_dict):
        return cls(
            vendor_id=to_int(stn_dict.get('vendor_id', VENDOR_ID)),
            product_id=to_int(stn_dict.get('product_id', PRODUCT_ID)),
            read_timeout=to_int(stn_dict.get('read_timeout',
                                             DEFAULT_READ_TIMEOUT)),
            max_iterations=to_int(stn_dict.get('max_iterations',
                                               DEFAULT_MAX_ITERATIONS)),
            quiescent_delay=float(stn_dict.get('quiescent_delay',
                                               DEFAULT_QUIESCENT_DELAY)),
            debug_comm=to_int(stn_dict.get('debug_comm', 0)))


class Transceiver(object):
    """USB logging system abstraction"""

    def __init__(self, config=None, devh=None):
        self.config = config if config is not None else TL500Config()
        self.devh = devh
        self.interface = 0
        self.iteration = 0

    def open(self):
        vid = self.config.vendor_id
        pid = self.config.product_id
        device = Transceiver._find_device(vid, pid)
        if device is None:
            logcrt('Cannot find USB device with Vendor=0x%04x ProdID=0x%04x' %
                   (vid, pid))
            raise DeviceNotFound('Unable to find logging system on USB')
        self.devh = Transceiver._open_device(device, self.interface)

    def close(self):
        Transceiver._close_device(self.devh, self.interface)
        self.devh = None

    @staticmethod
    def _find_device(vid, pid):
        for dev in usb.core.find(find_all=True):
            logdbg('%04x:%04x (bus %s, device %s)' %
                   (dev.idVendor, dev.idProduct, dev.bus, dev.address))
            if dev.idVendor == vid and dev.idProduct == pid:
                loginf('found logging system at bus=%s device=%s' %
                       (dev.bus, dev.address))
                return dev
        return None

    @staticmethod
    def _open_device(dev, interface=0):
        try:
            loginf('manufacturer: %s' %
                   usb.util.get_string(dev, dev.iManufacturer))
            loginf('product: %s' % usb.util.get_string(dev, dev.iProduct))
        except (usb.core.USBError, ValueError) as e:
            logdbg('cannot read device strings: %s' % e)
        loginf('interface: %d' % interface)

        # be sure kernel does not claim the interface
        try:
            if dev.is_kernel_driver_active(interface):
                dev.detach_kernel_driver(interface)
        except (usb.core.USBError, NotImplementedError):
            pass

        # attempt to claim the interface
        try:
            logdbg('claiming USB interface %d' % interface)
            dev.set_configuration()
            usb.util.claim_interface(dev, interface)
        except usb.core.USBError as e:
            Transceiver._close_device(dev, interface)
            logcrt('Unable to claim USB interface %s: %s' % (interface, e))
            raise weewx.WeeWxIOError(e)
        return dev

    @staticmethod
    def _close_device(devh, interface=0):
        if devh is not None:
            try:
                logdbg('releasing USB interface')
                usb.util.release_interface(devh, interface)
            except usb.core.USBError:
                pass
            usb.util.dispose_resources(devh)

    def _command(self, cmd):
        buf = [0] * self.config.frame_size
        buf[0] = cmd
        return buf

    def prime(self):
        """Send the prime command.  Returns False if the write failed."""
        buf = self._command(self.config.cmd_prime)
        if self.config.debug_comm > 0:
            self.dump('prime', buf)
        try:
            n = self.devh.write(self.config.endpoint_down, buf,
                                self.config.write_timeout)
        except usb.core.USBError as e:
            logerr('prime failed: %s' % e)
            return False
        if n != len(buf):
            logerr('prime failed: wrote %s of %s bytes' % (n, len(buf)))
            return False
        return True

    def poll_once(self, timeout=None):
        """Request a frame and read it.

        Returns the 64 byte response frame.  Raises IncompleteTransfer if
        either transfer fails or the response is short."""
        if timeout is None:
            timeout = self.config.read_timeout
        self.iteration += 1
        requested = self.config.frame_size
        buf = self._command(self.config.cmd_request)
        if self.config.debug_comm > 1:
            self.dump('request', buf)
        try:
            self.devh.write(self.config.endpoint_down, buf,
                            self.config.write_timeout)
            data = self.devh.read(self.config.endpoint_up, requested, timeout)
        except usb.core.USBError as e:
            status = e.errno if e.errno is not None else e.backend_error_code
            if status in NO_DEVICE_ERRORS:
                logerr('poll %d failed: logging system is gone (%s)' %
                       (self.iteration, e))
                raise DeviceLost(requested, 0, status)
            err = IncompleteTransfer(requested, 0, status)
            logerr('poll %d failed: %s (%s)' % (self.iteration, err, e))
            raise err
        frame = bytes(data)
        if len(frame) != requested:
            err = IncompleteTransfer(requested, len(frame))
            logerr('poll %d failed: %s' % (self.iteration, err))
            raise err
        if self.config.debug_comm > 0:
            self.dump('response', frame)
        return frame

    # debug_comm 1 shows the first 16 bytes, 2 and up shows the full frame
    def dump(self, cmd, buf):
        nbytes = len(buf) if self.config.debug_comm > 1 else 16
        pad = ' ' * (15 - len(cmd))
        for i in range(0, min(nbytes, len(buf)), 16):
            logdbg('%s: %s%s' % (cmd, pad, hex_str(buf[i:i + 16])))


class PollLoop(object):
    """Prime the logger, then poll it up to max_iterations times.

    Iterating the loop yields a SensorReading for every frame that carries a
    reading, and the TransferError for every failed poll.  Empty frames are
    skipped.  DeviceLost is raised, and ends the loop.  A loop runs once;
    iterating a loop that has already run yields nothing, so a new session
    needs a new PollLoop."""

    IDLE = 'idle'
    PRIMING = 'priming'
    POLLING = 'polling'
    TERMINATED = 'terminated'

    def __init__(self, transceiver, config=None, sleep=None, clock=time.time):
        if config is None:
            config = transceiver.config
        self.hid = transceiver
        self.max_iterations = config.max_iterations
        self.read_timeout = config.read_timeout
        self.quiescent_delay = config.quiescent_delay
        self.state = PollLoop.IDLE
        self.num_readings = 0
        self.num_empty = 0
        self.num_errors = 0
        self._stop_event = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop_event.wait
        self._clock = clock

    def __iter__(self):
        if self.state != PollLoop.IDLE:
            return iter(())
        return self._run()

    def stop(self):
        """Request termination.  Checked between iterations only."""
        self._stop_event.set()

    def is_stopped(self):
        return self._stop_event.is_set()

    def _run(self):
        self.state = PollLoop.PRIMING
        try:
            if not self.hid.prime():
                loginf('prime failed; polling anyway')
            self.state = PollLoop.POLLING
            for _ in range(self.max_iterations):
                if self.is_stopped():
                    logdbg('stop requested')
                    break
                try:
                    frame = self.hid.poll_once(self.read_timeout)
                except DeviceLost:
                    self.num_errors += 1
                    raise
                except TransferError as e:
                    self.num_errors += 1
                    yield e
                    continue
                try:
                    reading = make_reading(frame, int(self._clock()))
                except EmptyFrame:
                    self.num_empty += 1
                else:
                    self.num_readings += 1
                    yield reading
                    if self.is_stopped():
                        continue
                self._sleep(self.quiescent_delay)
        finally:
            self.state = PollLoop.TERMINATED
            loginf('polling terminated: readings=%s empty=%s errors=%s' %
                   (self.num_readings, self.num_empty, self.num_errors))


class ReadingFormatter(object):
    """Render readings and transfer errors as text lines."""

    def __init__(self, fmt=FORMAT_VERBOSE):
        self.fmt = fmt if fmt in format_names else FORMAT_VERBOSE

    @staticmethod
    def parse_format(value):
        """Map a --format argument to a format.  Only the first character
        counts; anything unrecognized means verbose."""
        if value:
            if value[0] == '1':
                return FORMAT_CSV
            if value[0] == '2':
                return FORMAT_RAW
        return FORMAT_VERBOSE

    def format(self, event):
        if isinstance(event, IncompleteTransfer):
            return ('Something went wrong (r == %s, actual_length == %s , '
                    'sizeof(data) == %s ).' %
                    (event.status, event.actual, event.requested))
        if isinstance(event, TransferError):
            return 'Something went wrong (%s).' % event
        date = time.asctime(time.localtime(event.captured_at))
        if self.fmt == FORMAT_CSV:
            return '%d, %d, %3.2f, %s, %d, %s, %s' % (
                event.sensor_id, event.raw_value, event.measurement,
                event.unit, event.elapsed, date, hex_str(event.frame, ''))
        if self.fmt == FORMAT_RAW:
            return hex_str(event.frame, '')
        return ('Received data %s %s\n'
                'From sensor %d we get a raw value %d. '
                'We guess this means %3.2f %s. Time: %d' % (
                    date, hex_str(event.frame), event.sensor_id,
                    event.raw_value, event.measurement, event.unit,
                    event.elapsed))


class CommunicationService(object):
    """Run polling sessions on a worker thread and queue their events."""

    def __init__(self, config):
        logdbg('CommunicationService.init')
        self.config = config
        self.hid = Transceiver(config)
        self.events = queue.Queue()
        self.loop = None
        self.running = False
        self.child = None
        self._wakeup = threading.Event()
        # an in-flight read plus the quiescent delay
        self.thread_wait = config.read_timeout / 1000.0 + \
            config.quiescent_delay + 5.0

    def setup(self):
        self.hid.open()

    def teardown(self):
        self.hid.close()

    def get_event(self, timeout=None):
        return self.events.get(True, timeout)

    def startRFThread(self):
        if self.child is not None:
            return
        logdbg('startRFThread: spawning polling thread')
        self.running = True
        self._wakeup.clear()
        self.child = threading.Thread(target=self.doRF)
        self.child.name = 'USBPoll'
        self.child.daemon = True
        self.child.start()

    def stopRFThread(self):
        self.running = False
        self._wakeup.set()
        if self.loop is not None:
            self.loop.stop()
        if self.child is None:
            return
        logdbg('stopRFThread: waiting for polling thread to terminate')
        self.child.join(self.thread_wait)
        if self.child.is_alive():
            logerr('unable to terminate polling thread after %d seconds' %
                   self.thread_wait)
        else:
            self.child = None

    def isRunning(self):
        return self.running

    def doRF(self):
        try:
            logdbg('starting usb communication')
            while self.running:
                self.loop = PollLoop(self.hid, self.config)
                if not self.running:
                    break
                for event in self.loop:
                    self.events.put(event)
                if self.loop.num_readings == 0 and self.loop.num_errors > 0:
                    logerr('session had %d errors and no readings; '
                           'retry in %d seconds' %
                           (self.loop.num_errors, RETRY_WAIT))
                    self._wakeup.wait(RETRY_WAIT)
        except DeviceLost as e:
            logerr('logging system disconnected: %s' % e)
            self.running = False
        except Exception as e:
            logerr('exception in doRF: %s' % e)
            self.running = False
            raise
        finally:
            logdbg('stopping usb communication')


class TL500ConfEditor(weewx.drivers.AbstractConfEditor):
    @property
    def default_stanza(self):
        return """
[TL500]
    # This section is for the Arexx TL-500 logging system.

    # The station model, e.g., 'Arexx TL-500' or 'Arexx TL-300'
    model = Arexx TL-500

    # The driver to use:
    driver = user.tl500

    # How long to wait for readings before checking on the polling thread,
    # in seconds
    polling_interval = 10

    # debug flag for frame dumps:
    #  0=no dumps; 1=first 16 bytes of each frame; 2=full frames
    debug_comm = 0

    # The timing of the USB communication.  Do not change these values if
    # you don't know what you are doing!
    # read_timeout = 1000      # in ms
    # quiescent_delay = 1.0    # in seconds
    # max_iterations = 10000   # requests per polling session

    # Readings are labelled temperature_<sensor id> or humidity_<sensor id>.
    # Without a sensor map each label is used as the field name.  With a
    # sensor map only the mapped readings are reported.  Be sure you use
    # valid weewx database field names.
    # [[sensor_map]]
    #     inTemp = temperature_8818
    #     outTemp = temperature_10002
    #     outHumidity = humidity_10003
"""

    def prompt_for_settings(self):
        print("Specify the model of the logging system, e.g., Arexx TL-500")
        model = self._prompt('model', 'Arexx TL-500')
        return {'model': model}


class TL500Configurator(weewx.drivers.AbstractConfigurator):
    def add_options(self, parser):
        super(TL500Configurator, self).add_options(parser)
        parser.add_option("--current", dest="current", action="store_true",
                          help="display the first reading")
        parser.add_option("--readings", dest="nreadings", type=int,
                          metavar="N", help="display N readings")
        parser.add_option("--format", dest="format", metavar="N",
                          default='0',
                          help="format for --readings: 0=verbose, 1=csv, "
                          "2=raw")

    def do_options(self, options, parser, config_dict, prompt):
        config = TL500Config.from_stn_dict(config_dict.get(DRIVER_NAME, {}))
        hid = Transceiver(config)
        hid.open()
        try:
            if options.nreadings is not None:
                fmt = ReadingFormatter.parse_format(options.format)
                self.show_readings(hid, options.nreadings,
                                   ReadingFormatter(fmt))
            else:
                self.show_current(hid)
        finally:
            hid.close()

    @staticmethod
    def show_current(hid):
        """Poll until the first reading arrives, then display it."""
        print('Querying the logging system for the current reading...')
        loop = PollLoop(hid)
        for event in loop:
            if isinstance(event, SensorReading):
                data = event._asdict()
                data['dateTime'] = data.pop('captured_at')
                data['frame'] = hex_str(event.frame)
                data['class'] = calibration_class(event.sensor_id)
                print_dict(data)
                loop.stop()
        if loop.num_readings == 0:
            print('No reading after %d polls' % hid.iteration)

    @staticmethod
    def show_readings(hid, count, formatter):
        """Display count readings, and the failed transfers in between."""
        loop = PollLoop(hid)
        for event in loop:
            print(formatter.format(event))
            if loop.num_readings >= count:
                loop.stop()
        print('Found %d readings' % loop.num_readings)


class TL500Driver(weewx.drivers.AbstractDevice):
    """Driver for Arexx TL-500 logging systems."""

    def __init__(self, **stn_dict):
        """Initialize the station object.

        model: Which station model is this?
        [Optional. Default is 'Arexx TL-500']

        polling_interval: How long to wait for a reading before checking on
        the polling thread, in seconds.
        [Optional. Default is 10 seconds]

        sensor_map: Map of database field names to reading labels.
        [Optional. Default is to use the reading labels as field names]

        The USB and timing parameters are described in TL500Config.
        """
        self.model = stn_dict.get('model', 'Arexx TL-500')
        self.polling_interval = float(stn_dict.get('polling_interval', 10))
        self.sensor_map = stn_dict.get('sensor_map', {})
        self.config = TL500Config.from_stn_dict(stn_dict)

        now = int(time.time())
        self._service = None
        self._last_obs_ts = None
        self._last_nodata_log_ts = now
        self._nodata_interval = 300  # how often to check for no data
        self._log_interval = 600  # how often to log
        self._packet_count = 0
        self._error_count = 0

        loginf('driver version is %s' % DRIVER_VERSION)
        loginf('usb id is %04x:%04x' %
               (self.config.vendor_id, self.config.product_id))
        loginf('sensor map is %s' % self.sensor_map)

        self.startUp()

    @property
    def hardware_name(self):
        return self.model

    # this is invoked by StdEngine as it shuts down
    def closePort(self):
        self.shutDown()

    def genLoopPackets(self):
        """Generator function that continuously returns decoded packets."""
        while True:
            if not self._service.isRunning():
                raise weewx.WeeWxIOError('polling thread is not running')
            try:
                event = self._service.get_event(self.polling_interval)
            except queue.Empty:
                self._log_no_data()
                continue
            if isinstance(event, TransferError):
                self._error_count += 1
                logdbg('genLoopPackets: %s; error count: %s' %
                       (event, self._error_count))
                continue
            packet = self.reading_to_packet(event)
            if packet is None:
                continue
            self._packet_count += 1
            self._last_obs_ts = packet['dateTime']
            logdbg('genLoopPackets: packet_count=%s: packet=%s' %
                   (self._packet_count, packet))
            yield packet

    def _log_no_data(self):
        now = int(time.time())
        if (self._last_obs_ts is None or
            now - self._last_obs_ts > self._nodata_interval):
            if now - self._last_nodata_log_ts > self._log_interval:
                msg = 'no new sensor data'
                if self._last_obs_ts is not None:
                    msg += ' after %d seconds' % (now - self._last_obs_ts)
                loginf(msg)
                self._last_nodata_log_ts = now

    @staticmethod
    def reading_label(reading):
        if reading.unit == UNIT_HUMIDITY:
            return 'humidity_%s' % reading.sensor_id
        return 'temperature_%s' % reading.sensor_id

    def reading_to_packet(self, reading):
        label = TL500Driver.reading_label(reading)
        if self.sensor_map:
            fields = [k for k in self.sensor_map if self.sensor_map[k] == label]
            if not fields:
                logdbg('ignoring unmapped reading %s' % label)
                return None
        else:
            fields = [label]
        packet = {'usUnits': weewx.METRIC, 'dateTime': reading.captured_at}
        for f in fields:
            packet[f] = reading.measurement
        return packet

    def startUp(self):
        if self._service is not None:
            return
        self._service = CommunicationService(self.config)
        self._service.setup()
        self._service.startRFThread()

    def shutDown(self):
        if self._service is None:
            return
        self._service.stopRFThread()
        self._service.teardown()
        self._service = None


class LenientOptionParser(optparse.OptionParser):
    """Option parser that warns about unknown options and carries on."""

    # optparse reports a missing or unexpected option value through error()
    def error(self, msg):
        raise optparse.OptionValueError(msg)

    def _process_args(self, largs, rargs, values):
        while True:
            try:
                optparse.OptionParser._process_args(self, largs, rargs, values)
                return
            except optparse.BadOptionError as e:
                print('Warning: Unknown option %s' % e.opt_str)
            except optparse.OptionValueError as e:
                print('Warning: %s' % e)


def main(argv=None):
    import weeutil.logger

    usage = """%prog [OPTION]...

Communicates with the Arexx TL 500."""
    parser = LenientOptionParser(usage=usage, prog='tl500')
    parser.add_option('-f', '--format', dest='format', metavar='STYLE',
                      default='0',
                      help="""Output format:
0 (default): Received data ... 00 0a 72 22 0c ...
From sensor 8818 we get a raw value 3095.
We guess this means 24.14 °C.
1 (csv): 8818, 3095, 24.14, °C, ..., 000a72220c...
2 (raw): 000a72220c...""")
    parser.add_option('--debug', dest='debug', action='store_true',
                      help='display diagnostic information while running')
    (options, _) = parser.parse_args(argv)

    if options.debug:
        weewx.debug = 1
    weeutil.logger.setup('tl500', {'debug': weewx.debug})

    print('%d seconds since January 1, 1970' % int(time.time()))
    formatter = ReadingFormatter(ReadingFormatter.parse_format(options.format))
    config = TL500Config(debug_comm=2 if options.debug else 0)
    hid = Transceiver(config)

    print('Trying to find Arexx logging system.')
    try:
        hid.open()
    except DeviceNotFound:
        print('No logging system found.', file=sys.stderr)
        return 1
    except weewx.WeeWxIOError as e:
        print('Unable to open logging system: %s' % e, file=sys.stderr)
        return 1

    try:
        for event in PollLoop(hid):
            print(formatter.format(event))
    except DeviceLost:
        print('Logging system disconnected.', file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        hid.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
