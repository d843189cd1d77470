"""
Unit tests for advertisement records and the packet assembler.
"""

from contextlib import contextmanager

import pytest

from ruuvi_gateway.ble.packet import AdvertisementRecord, PacketAssembler, describe_record
from ruuvi_gateway.exceptions.errors import TransportCallError
from tests.fixtures.sensor_data import SensorDataFixtures
from tests.mocks.mock_transport import FakeTransport
from tests.utils.helpers import RecordCollector


DEVICE_PATH = "/org/bluez/hci0/dev_CB_B8_33_4C_88_4F"
TAG_MAC = SensorDataFixtures.TAG_MAC


class TestAdvertisementRecord:
    """Test record construction from device properties."""

    def test_from_properties(self):
        properties = SensorDataFixtures.device_properties(
            "cb:b8:33:4c:88:4f", SensorDataFixtures.FORMAT5_VALID, rssi=-72)

        record = AdvertisementRecord.from_properties(properties)

        assert record.mac == TAG_MAC
        assert record.device_name == "Ruuvi 884F"
        assert record.signal_strength == -72
        assert record.manufacturer_id == 0x0499
        assert record.manufacturer_data == SensorDataFixtures.FORMAT5_VALID

    def test_missing_properties(self):
        record = AdvertisementRecord.from_properties({"Address": TAG_MAC})

        assert record == AdvertisementRecord(mac=TAG_MAC)
        assert record.manufacturer_data == b""
        assert record.signal_strength == 0

    def test_lowest_manufacturer_id_wins(self):
        record = AdvertisementRecord.from_properties({
            "Address": TAG_MAC,
            "ManufacturerData": {0x0499: [5, 1, 2], 0x004C: [0x02, 0x15]},
        })

        assert record.manufacturer_id == 0x004C
        assert record.manufacturer_data == bytes([0x02, 0x15])

    def test_describe_record(self):
        record = SensorDataFixtures.record(bytes([5, 0x12]), signal_strength=-60)
        text = describe_record(record)

        assert f"Ble packet MAC: {TAG_MAC}" in text
        assert "Manufacturer id: 0x0499" in text
        assert "Manufacturer data: 0x05 0x12" in text
        assert "Signal strength: -60" in text

    def test_describe_unnamed_record(self):
        assert "Device name: {unnamed}" in describe_record(AdvertisementRecord(mac=TAG_MAC))


class TestPacketAssembler:
    """Test emission of records on property changes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.transport = FakeTransport()
        self.transport.add_device(DEVICE_PATH, SensorDataFixtures.device_properties(
            TAG_MAC, SensorDataFixtures.FORMAT5_VALID))
        self.collector = RecordCollector()
        self.assembler = PacketAssembler(self.transport, self.collector)

    def test_requires_callback(self):
        with pytest.raises(ValueError):
            PacketAssembler(self.transport, None)

    @pytest.mark.asyncio
    async def test_manufacturer_data_change_emits(self):
        emitted = await self.assembler.on_properties_changed(DEVICE_PATH, ["ManufacturerData", "RSSI"])

        assert emitted
        assert len(self.collector) == 1
        record = self.collector.records[0]
        assert record.mac == TAG_MAC
        assert record.manufacturer_data == SensorDataFixtures.FORMAT5_VALID
        assert self.transport.count("GetAll") == 1

    @pytest.mark.asyncio
    async def test_rssi_only_change_does_not_emit(self):
        emitted = await self.assembler.on_properties_changed(DEVICE_PATH, ["RSSI"])

        assert not emitted
        assert len(self.collector) == 0
        assert self.transport.count("GetAll") == 0

    @pytest.mark.asyncio
    async def test_emits_latest_properties(self):
        self.transport.update_device(DEVICE_PATH, RSSI=-90)

        await self.assembler.emit_packet(DEVICE_PATH)

        assert self.collector.records[0].signal_strength == -90

    @pytest.mark.asyncio
    async def test_properties_read_failure_propagates(self):
        self.transport.fail("GetAll", times=1)

        with pytest.raises(TransportCallError):
            await self.assembler.emit_packet(DEVICE_PATH)
        assert len(self.collector) == 0

    @pytest.mark.asyncio
    async def test_closed_gate_blocks_emission(self):
        @contextmanager
        def closed(path):
            yield False

        assembler = PacketAssembler(self.transport, self.collector, gate=closed)

        assert not await assembler.emit_packet(DEVICE_PATH)
        assert len(self.collector) == 0
        assert self.transport.count("GetAll") == 0

    @pytest.mark.asyncio
    async def test_gate_closing_during_read_drops_packet(self):
        states = iter([True, False])

        @contextmanager
        def gate(path):
            yield next(states)

        assembler = PacketAssembler(self.transport, self.collector, gate=gate)

        assert not await assembler.emit_packet(DEVICE_PATH)
        assert len(self.collector) == 0
        assert self.transport.count("GetAll") == 1

    @pytest.mark.asyncio
    async def test_callback_exception_propagates(self):
        def failing(record):
            raise RuntimeError("callback failed")

        assembler = PacketAssembler(self.transport, failing)

        with pytest.raises(RuntimeError, match="callback failed"):
            await assembler.emit_packet(DEVICE_PATH)
