categories_sql = """
CREATE TABLE categories (
    id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

INSERT INTO categories (name) VALUES ('Electronics'), ('Clothing'), ('Home Appliances');
"""

products_sql = """
CREATE TABLE products (
    id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,

    user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    category_id BIGINT REFERENCES categories(id) ON DELETE SET NULL,

    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    price NUMERIC(10, 2) NOT NULL CHECK (price > 0),
    rating SMALLINT CHECK (rating BETWEEN 1 AND 5),
    image_url TEXT,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

product_images_bucket_sql = """
INSERT INTO storage.buckets (id, name, public)
VALUES ('product-images', 'product-images', true)
ON CONFLICT (id) DO NOTHING;
"""
