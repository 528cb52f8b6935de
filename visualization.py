# visualization.py
"""
Handles the visualization of the particle simulation using Pygame.

The two mappings the renderer needs are plain functions so they can be
used without a display: particle type -> RGB color (with a fallback for
types that have no palette entry) and world position -> normalized
render coordinates.
"""
import logging
import pygame
import numpy as np
from typing import List, Optional, Sequence, Tuple

from constants import (
    BACKGROUND_COLOR, DEFAULT_PARTICLE_RADIUS, FALLBACK_COLOR, FPS, FULLSCREEN,
    MOTION_BLUR_ALPHA, UI_BACKGROUND_ALPHA, UI_PANEL_WIDTH, VIBRANT_COLORS,
    WINDOW_HEIGHT
)
from particle import ParticleSystem
from params import SimParams

# Forward reference for type hinting to avoid circular import
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from simulation import Simulation


# --- Data Contracts ---
#
# build_palette(particle_types: int, config_colors: Optional[list]) -> List[Tuple[int, int, int]]:
#   - Outputs: exactly particle_types RGB tuples. Missing entries are filled
#     from VIBRANT_COLORS, excess entries dropped.
#
# type_colors(types: np.ndarray, palette) -> np.ndarray:
#   - Outputs: uint8 array of shape (N, 3). Types outside [0, len(palette))
#     get FALLBACK_COLOR.
#
# to_render_coords(positions: np.ndarray, width: float, height: float) -> np.ndarray:
#   - Outputs: float64 array (N, 2) in [-1, 1]; x grows right, y grows up,
#     so world y = 0 maps to the top edge (+1).
#
# class Visualizer:
#   - draw(self, particles: ParticleSystem, simulation: "Simulation") -> bool:
#     - Outputs: False if the user has quit, True otherwise.
#     - Side Effects: Renders particles and UI, handles Pygame events, and may
#       edit the simulation's force table between steps.


def build_palette(particle_types: int, config_colors: Optional[list] = None) -> List[Tuple[int, int, int]]:
    """Initializes particle colors from config, falling back to a vibrant default palette."""
    def get_default_colors(n_types):
        return [tuple(VIBRANT_COLORS[i % len(VIBRANT_COLORS)]) for i in range(n_types)]

    if not config_colors:
        logging.info("No colors found in config. Using vibrant default palette.")
        return get_default_colors(particle_types)

    final_colors = []
    try:
        for rgb in config_colors:
            r, g, b = (int(c) for c in rgb)
            final_colors.append((r, g, b))
    except (ValueError, TypeError) as e:
        logging.error(f"Could not parse colors from config due to invalid format: {e}. Falling back to vibrant default palette.")
        return get_default_colors(particle_types)

    num_loaded = len(final_colors)
    if num_loaded < particle_types:
        logging.warning(
            f"Config provides {num_loaded} colors, but {particle_types} are needed. "
            f"Generating the remaining {particle_types - num_loaded} using the default palette."
        )
        final_colors.extend(get_default_colors(particle_types)[num_loaded:])
    elif num_loaded > particle_types:
        logging.warning(
            f"Config provides {num_loaded} colors, but only {particle_types} are needed. "
            "Ignoring excess colors."
        )
        final_colors = final_colors[:particle_types]
    else:
        logging.info(f"Successfully loaded {num_loaded} particle colors from configuration.")

    return final_colors


def type_colors(types: np.ndarray, palette: Sequence[Tuple[int, int, int]]) -> np.ndarray:
    """Looks up one RGB color per particle; unknown types get the fallback color."""
    types = np.asarray(types)
    lut = np.array(list(palette) + [FALLBACK_COLOR], dtype=np.uint8).reshape(-1, 3)
    fallback_index = lut.shape[0] - 1
    idx = np.where((types >= 0) & (types < fallback_index), types, fallback_index)
    return lut[idx.astype(np.int64)]


def to_render_coords(positions: np.ndarray, width: float, height: float) -> np.ndarray:
    """Linear map from the world rectangle to normalized render coordinates."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
    out = np.empty_like(positions)
    out[:, 0] = (positions[:, 0] / width) * 2.0 - 1.0
    out[:, 1] = (positions[:, 1] / height) * -2.0 + 1.0
    return out


def render_to_screen(coords: np.ndarray, screen_width: int, screen_height: int) -> np.ndarray:
    """Normalized render coordinates to integer pixel positions."""
    px = (coords[:, 0] + 1.0) * 0.5 * screen_width
    py = (1.0 - coords[:, 1]) * 0.5 * screen_height
    return np.column_stack((px, py)).astype(np.int32)


class Visualizer:
    """
    Renders the particle system state and an editable force table panel.
    """
    def __init__(self, params: SimParams, colors: Optional[list] = None):
        """
        Initializes Pygame and the display window.
        """
        pygame.init()
        pygame.font.init()

        self.world_width = params.domain_width
        self.world_height = params.domain_height

        if FULLSCREEN:
            display_info = pygame.display.Info()
            self.sim_height = display_info.current_h
        else:
            self.sim_height = WINDOW_HEIGHT
        # Keep the world's aspect ratio in the simulation area
        self.sim_width = int(round(self.sim_height * self.world_width / self.world_height))
        width = self.sim_width + UI_PANEL_WIDTH
        flags = pygame.FULLSCREEN if FULLSCREEN else 0
        self.screen = pygame.display.set_mode((width, self.sim_height), flags)

        self.sim_surface = pygame.Surface((self.sim_width, self.sim_height))
        # Fading overlay blitted every frame to leave short trails.
        self.blur_surface = pygame.Surface((self.sim_width, self.sim_height), pygame.SRCALPHA)
        self.blur_surface.fill((*BACKGROUND_COLOR, MOTION_BLUR_ALPHA))
        self.ui_panel_surface = pygame.Surface((UI_PANEL_WIDTH, self.sim_height), pygame.SRCALPHA)
        self.ui_panel_surface.fill((40, 40, 40, UI_BACKGROUND_ALPHA))

        pygame.display.set_caption("Particle Life")
        self.clock = pygame.time.Clock()

        self.palette = build_palette(params.particle_types, colors)
        self.font_main = pygame.font.SysFont(None, 18)

        num_types = params.particle_types
        self.label_margin = 20
        self.matrix_pos = (self.sim_width + 30, 10 + self.label_margin)
        # Shrink the cells so the table always fits in the panel
        self.cell_padding = 2
        self.cell_size = max(12, min(40, (UI_PANEL_WIDTH - 50) // num_types - self.cell_padding))
        self.label_circle_radius = max(3, self.cell_size // 5)
        self.hovered_cell: Optional[Tuple[int, int]] = None
        self.scroll_sensitivity = 0.05

        matrix_pixel = num_types * (self.cell_size + self.cell_padding) - self.cell_padding
        button_y = self.matrix_pos[1] + matrix_pixel + 10
        self.reset_button_rect = pygame.Rect(self.matrix_pos[0], button_y, matrix_pixel, 30)
        self.randomize_button_rect = pygame.Rect(self.matrix_pos[0], self.reset_button_rect.bottom + 5, matrix_pixel, 30)

        self.button_color = (80, 80, 80)
        self.button_hover_color = (110, 110, 110)
        self.text_color = (255, 255, 255)
        self.text_color_key = (200, 200, 200)

        self.sim_params = params.as_display_dict()

        logging.info(f"Visualizer initialized with Pygame display ({width}x{self.sim_height}).")

    def _get_matrix_cell_from_pos(self, pos: Tuple[int, int], num_types: int) -> Optional[Tuple[int, int]]:
        """
        Converts a screen position to force table cell coordinates if hovering over the table.
        """
        mx, my = self.matrix_pos
        step = self.cell_size + self.cell_padding
        c = (pos[0] - mx) // step
        r = (pos[1] - my) // step
        if not (0 <= r < num_types and 0 <= c < num_types):
            return None
        # Ignore the padding gaps between cells
        if (pos[0] - mx) % step >= self.cell_size or (pos[1] - my) % step >= self.cell_size:
            return None
        return (int(r), int(c))

    def _draw_force_table(self, simulation: "Simulation"):
        """Renders the force table, its type labels, and highlights the hovered cell."""
        table = simulation.force_table
        rows, cols = table.shape
        step = self.cell_size + self.cell_padding

        for i in range(rows):
            center = (
                self.matrix_pos[0] - self.label_margin / 2,
                self.matrix_pos[1] + i * step + self.cell_size / 2,
            )
            pygame.draw.circle(self.screen, self.palette[i], center, self.label_circle_radius)
        for i in range(cols):
            center = (
                self.matrix_pos[0] + i * step + self.cell_size / 2,
                self.matrix_pos[1] - self.label_margin / 2,
            )
            pygame.draw.circle(self.screen, self.palette[i], center, self.label_circle_radius)

        for r in range(rows):
            for c in range(cols):
                value = table[r, c]
                # Green pulls towards the neighbor type, red pushes away
                intensity = int(200 * min(abs(value), 1.0))
                if value > 0:
                    bg_color = (0, intensity, 0)
                elif value < 0:
                    bg_color = (intensity, 0, 0)
                else:
                    bg_color = (50, 50, 50)

                cell_rect = pygame.Rect(
                    self.matrix_pos[0] + c * step, self.matrix_pos[1] + r * step,
                    self.cell_size, self.cell_size
                )
                pygame.draw.rect(self.screen, bg_color, cell_rect)
                if self.hovered_cell == (r, c):
                    pygame.draw.rect(self.screen, FALLBACK_COLOR, cell_rect, 2)

                if self.cell_size >= 30:
                    text_surf = self.font_main.render(f"{value:.2f}", True, self.text_color)
                    self.screen.blit(text_surf, text_surf.get_rect(center=cell_rect.center))

    def _draw_button(self, rect: pygame.Rect, label: str, mouse_pos: Tuple[int, int]):
        color = self.button_hover_color if rect.collidepoint(mouse_pos) else self.button_color
        pygame.draw.rect(self.screen, color, rect, border_radius=5)
        text_surf = self.font_main.render(label, True, self.text_color)
        self.screen.blit(text_surf, text_surf.get_rect(center=rect.center))

    def _draw_simulation_parameters(self):
        """Lists the scalar parameters below the buttons."""
        line_height = self.font_main.get_linesize()
        y = self.randomize_button_rect.bottom + 20
        x = self.matrix_pos[0]
        for key, value in self.sim_params.items():
            display_key = key.replace('_', ' ').title()
            display_value = f"{value:.2f}" if isinstance(value, float) else str(value)
            surf = self.font_main.render(f"{display_key}: {display_value}", True, self.text_color_key)
            self.screen.blit(surf, (x, y))
            y += line_height
            if y > self.sim_height - line_height:
                break

    def _handle_events(self, simulation: "Simulation", mouse_pos: Tuple[int, int]) -> bool:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                logging.info("Quit event received. Shutting down visualizer.")
                return False

            if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                logging.info("ESC key pressed. Shutting down visualizer.")
                return False

            if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                if self.reset_button_rect.collidepoint(mouse_pos):
                    simulation.reset_force_table()
                elif self.randomize_button_rect.collidepoint(mouse_pos):
                    simulation.randomize_force_table()

            if event.type == pygame.MOUSEWHEEL and self.hovered_cell:
                r, c = self.hovered_cell
                old_value = simulation.force_table[r, c]
                # event.y is 1 for scroll up, -1 for scroll down
                new_value = float(np.clip(old_value + event.y * self.scroll_sensitivity, -1.0, 1.0))
                simulation.set_affinity(r, c, new_value)
        return True

    def draw(self, particles: ParticleSystem, simulation: "Simulation") -> bool:
        """
        Draws all particles and UI, and handles events.

        Returns:
            bool: False if the simulation should exit, True otherwise.
        """
        mouse_pos = pygame.mouse.get_pos()
        self.hovered_cell = self._get_matrix_cell_from_pos(mouse_pos, simulation.force_table.shape[0])

        if not self._handle_events(simulation, mouse_pos):
            return False

        self.sim_surface.blit(self.blur_surface, (0, 0))

        colors = type_colors(particles.types, self.palette)
        coords = to_render_coords(particles.positions, self.world_width, self.world_height)
        screen_pos = render_to_screen(coords, self.sim_width, self.sim_height)
        for i in range(particles.particle_count):
            pygame.draw.circle(
                self.sim_surface,
                tuple(int(v) for v in colors[i]),
                (int(screen_pos[i, 0]), int(screen_pos[i, 1])),
                DEFAULT_PARTICLE_RADIUS
            )

        self.screen.blit(self.sim_surface, (0, 0))
        self.screen.blit(self.ui_panel_surface, (self.sim_width, 0))
        self._draw_force_table(simulation)
        self._draw_button(self.reset_button_rect, "Reset", mouse_pos)
        self._draw_button(self.randomize_button_rect, "Randomize", mouse_pos)
        self._draw_simulation_parameters()

        pygame.display.flip()
        self.clock.tick(FPS)
        return True

    def close(self):
        """Shuts down Pygame."""
        pygame.font.quit()
        pygame.quit()
