"""Tests for texture building and sampling."""

import dataclasses

import pytest
import torch

from mvsframes.config import FilterMode, ReadMode, TextureConfig
from mvsframes.errors import BindingFailure
from mvsframes.memory import PitchedBuffer2D
from mvsframes.texture import AddressMode, Texture, build_frame_texture


def _filled_buffer(width, height, device, dtype=torch.float32):
    """Buffer whose texel (x, y) holds (x, y, x + 10 * y, 1)."""
    buffer = PitchedBuffer2D(width, height, dtype, device)
    v, u = torch.meshgrid(
        torch.arange(height, device=device, dtype=torch.float32),
        torch.arange(width, device=device, dtype=torch.float32),
        indexing="ij",
    )
    pixels = torch.stack([u, v, u + 10 * v, torch.ones_like(u)], dim=-1)
    buffer.view.copy_(pixels)
    return buffer


class TestBuildFrameTexture:
    """Tests for build_frame_texture."""

    def test_descriptor_mirrors_buffer(self, device):
        buffer = _filled_buffer(10, 4, device)
        texture = build_frame_texture(buffer, TextureConfig())

        res = texture.resource
        assert res.width == 10
        assert res.height == 4
        assert res.pitch == buffer.pitch
        assert res.handle == buffer.handle
        assert res.channel_format.bits == (32, 32, 32, 32)
        assert res.channel_format.kind == "float"

    def test_sampling_descriptor(self):
        buffer = _filled_buffer(4, 4, "cpu")
        texture = build_frame_texture(
            buffer, TextureConfig(use_uchar=False, use_interpolation=True)
        )
        desc = texture.descriptor
        assert desc.address_mode is AddressMode.CLAMP
        assert desc.filter_mode is FilterMode.LINEAR
        assert desc.read_mode is ReadMode.ELEMENT_TYPE
        assert desc.normalized_coords is False

    def test_fetch_matches_buffer(self, device):
        buffer = _filled_buffer(10, 4, device)
        texture = build_frame_texture(buffer, TextureConfig())
        assert torch.equal(texture.fetch(), buffer.view)

    def test_wrong_pitch_corrupts_reads(self):
        """A texture described with a stale pitch reads the wrong rows."""
        buffer = _filled_buffer(10, 4, "cpu")
        texture = build_frame_texture(buffer, TextureConfig())
        stale = dataclasses.replace(texture.resource, pitch=10 * 16)
        corrupted = Texture(stale, texture.descriptor)

        fetched = corrupted.fetch()
        assert torch.equal(fetched[0], buffer.view[0])
        assert not torch.equal(fetched[1:], buffer.view[1:])

    def test_handles_unique(self):
        buffer = _filled_buffer(4, 4, "cpu")
        first = build_frame_texture(buffer, TextureConfig())
        second = build_frame_texture(buffer, TextureConfig())
        assert first.handle != second.handle

    def test_released_buffer(self):
        buffer = _filled_buffer(4, 4, "cpu")
        buffer.release()
        with pytest.raises(BindingFailure, match="released"):
            build_frame_texture(buffer, TextureConfig())

    def test_unsupported_dtype(self):
        buffer = PitchedBuffer2D(4, 4, torch.float64)
        with pytest.raises(BindingFailure, match="unsupported channel type"):
            build_frame_texture(buffer, TextureConfig())


class TestPointSampling:
    """Tests for nearest-texel sampling."""

    def test_texel_centres(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig())

        x = torch.tensor([0.5, 3.5, 7.5], device=device)
        y = torch.tensor([0.5, 2.5, 5.5], device=device)
        values = texture.sample(x, y)

        assert values.shape == (3, 4)
        assert torch.equal(values[:, 0], torch.tensor([0.0, 3.0, 7.0], device=device))
        assert torch.equal(values[:, 1], torch.tensor([0.0, 2.0, 5.0], device=device))

    def test_floor_within_texel(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig())

        values = texture.sample(
            torch.tensor([3.0, 3.99], device=device), torch.tensor([2.0, 2.99], device=device)
        )
        assert torch.equal(values[0], values[1])
        assert values[0, 2].item() == 3.0 + 10 * 2.0

    def test_clamp_to_edge(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig())

        values = texture.sample(
            torch.tensor([-5.0, 100.0], device=device), torch.tensor([-5.0, 100.0], device=device)
        )
        assert values[0, :2].tolist() == [0.0, 0.0]
        assert values[1, :2].tolist() == [7.0, 5.0]

    def test_preserves_coordinate_shape(self):
        buffer = _filled_buffer(8, 6, "cpu")
        texture = build_frame_texture(buffer, TextureConfig())
        x = torch.full((2, 3, 5), 1.5)
        assert texture.sample(x, x).shape == (2, 3, 5, 4)

    def test_uchar_element_reads_are_raw(self):
        buffer = _filled_buffer(8, 6, "cpu", dtype=torch.uint8)
        texture = build_frame_texture(buffer, TextureConfig(use_uchar=True))
        values = texture.sample(torch.tensor([7.5]), torch.tensor([5.5]))
        assert values[0, 2].item() == 57.0


class TestLinearSampling:
    """Tests for bilinear sampling."""

    def test_texel_centres_exact(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig(use_interpolation=True))

        values = texture.sample(
            torch.tensor([2.5, 6.5], device=device), torch.tensor([1.5, 4.5], device=device)
        )
        expected = torch.tensor([[2.0, 1.0, 12.0, 1.0], [6.0, 4.0, 46.0, 1.0]], device=device)
        assert torch.allclose(values, expected, atol=1e-5)

    def test_interpolates_between_texels(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig(use_interpolation=True))

        values = texture.sample(
            torch.tensor([1.0], device=device), torch.tensor([2.0], device=device)
        )
        # Halfway between texels 0/1 in x and 1/2 in y
        assert torch.allclose(
            values[0, :2], torch.tensor([0.5, 1.5], device=device), atol=1e-5
        )

    def test_clamp_to_edge(self, device):
        buffer = _filled_buffer(8, 6, device)
        texture = build_frame_texture(buffer, TextureConfig(use_interpolation=True))

        values = texture.sample(
            torch.tensor([-3.0, 50.0], device=device), torch.tensor([-3.0, 50.0], device=device)
        )
        assert torch.allclose(
            values[:, :2], torch.tensor([[0.0, 0.0], [7.0, 5.0]], device=device), atol=1e-5
        )

    def test_normalized_float_reads(self, device):
        buffer = PitchedBuffer2D(4, 4, torch.uint8, device)
        buffer.view.fill_(255)
        buffer.view[..., 0] = 51
        texture = build_frame_texture(
            buffer, TextureConfig(use_uchar=True, use_interpolation=True)
        )

        values = texture.sample(
            torch.tensor([1.5], device=device), torch.tensor([1.5], device=device)
        )
        assert torch.allclose(
            values[0], torch.tensor([0.2, 1.0, 1.0, 1.0], device=device), atol=1e-5
        )


class TestDestroy:
    """Tests for texture invalidation."""

    def test_destroyed_texture_unusable(self):
        buffer = _filled_buffer(4, 4, "cpu")
        texture = build_frame_texture(buffer, TextureConfig())
        texture.destroy()

        assert not texture.valid
        with pytest.raises(BindingFailure, match="destroyed"):
            texture.fetch()
        with pytest.raises(BindingFailure):
            texture.sample(torch.tensor([0.5]), torch.tensor([0.5]))

    def test_context_manager(self):
        buffer = _filled_buffer(4, 4, "cpu")
        with build_frame_texture(buffer, TextureConfig()) as texture:
            assert texture.valid
        assert not texture.valid
